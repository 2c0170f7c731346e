import logging
from contextlib import AbstractContextManager
from contextvars import ContextVar, Token
from types import TracebackType
from typing import TYPE_CHECKING

from scopegraph.backend import SUPPORTED_BACKENDS, GraphBackend, retrieve_backend

if TYPE_CHECKING:
    from scopegraph.scope import Scope

logger = logging.getLogger(__name__)


class BuildContext(AbstractContextManager):
    """A build context is a Python context manager used to build graphs, which specifies
    the backend graph engine and the build flags. Root scopes that are created without an
    explicit backend graph ask the current build context for a fresh one.
    """

    def __init__(self, backend: str = "torch", *, fold_constants: bool = True, **backend_kwargs):
        """Initializes a build context, given the backend and the build flags.

        Args:
            backend: The backend graph engine. The only backend supported is 'torch'.
            fold_constants: Whether to replace the operations whose outputs are statically
                known with constant nodes.
            backend_kwargs: The arguments to pass to the backend graphs.

        Raises:
            NotImplementedError: If the backend is unknown.
        """
        if backend not in SUPPORTED_BACKENDS:
            raise NotImplementedError(f"Backend '{backend}' is not implemented")
        self._backend = backend
        self._backend_kwargs = backend_kwargs
        self._fold_constants = fold_constants

        # The token used to restore the build context
        self._token: Token[BuildContext] | None = None

    @classmethod
    def current(cls) -> "BuildContext":
        """Retrieves the current build context.

        Returns:
            The innermost build context that has been entered, or the default one
                (the 'torch' backend with constant folding) if none has been entered.
        """
        return _BUILD_CONTEXT.get()

    @property
    def backend(self) -> str:
        return self._backend

    @property
    def fold_constants(self) -> bool:
        return self._fold_constants

    def new_graph(self) -> GraphBackend:
        return retrieve_backend(self._backend, **self._backend_kwargs)

    def new_scope(self) -> "Scope":
        """Creates a root scope on a fresh backend graph, using the flags of this context.

        Returns:
            The root scope.
        """
        # pylint: disable-next=import-outside-toplevel
        from scopegraph.scope import Scope

        scope = Scope(self.new_graph(), fold_constants=self._fold_constants)
        logger.debug("Created a root scope on a %s graph", self._backend)
        return scope

    def __enter__(self) -> "BuildContext":
        """Enters a build context.

        Returns:
            Itself.
        """
        self._token = _BUILD_CONTEXT.set(self)
        return self

    def __exit__(
        self,
        __exc_type: type[BaseException] | None,
        __exc_value: BaseException | None,
        __traceback: TracebackType | None,
    ) -> bool | None:
        """Exit a build context."""
        _BUILD_CONTEXT.reset(self._token)
        self._token = None
        return None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"backend={self._backend}, "
            f"fold_constants={self._fold_constants}"
            ")"
        )


# Context variable holding the current build context
_BUILD_CONTEXT: ContextVar[BuildContext] = ContextVar("_BUILD_CONTEXT", default=BuildContext())
