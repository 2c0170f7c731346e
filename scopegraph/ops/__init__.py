"""
This module contains the operation kinds and the builder functions installing them in a scope.
The composite operations, e.g., the softmax along any dimension, are built from the primitive
ones and never install nodes of types unknown to the backend.
"""
from scopegraph.ops import array_ops as array_ops
from scopegraph.ops import math_ops as math_ops
from scopegraph.ops import nn_ops as nn_ops
