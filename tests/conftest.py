import os
import random

import numpy as np
import pytest
import torch

from scopegraph import BuildContext, Scope


@pytest.fixture(autouse=True)
def _setup_global_state() -> None:
    # Seed all RNGs.
    seed = 42
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    # Set deterministic algorithms.
    torch.use_deterministic_algorithms(True, warn_only=True)
    torch.backends.cudnn.benchmark = False
    os.environ["CUBLAS_WORKSPACE_CONFIG"] = ":16:8"
    # Disable autograd because graphs are only evaluated.
    torch.set_grad_enabled(False)


@pytest.fixture
def scope() -> Scope:
    return BuildContext("torch").new_scope()


@pytest.fixture
def dynamic_scope() -> Scope:
    # A scope that never replaces operations with constants
    return BuildContext("torch", fold_constants=False).new_scope()
