"""
Control-flow helpers shared by the settings layer and the HTTP client.
"""
import logging
from typing import Any, Callable, List, Tuple, Type, Union

logger = logging.getLogger(__name__)

Fix = Callable[[], Any]


def _label(fn: Any) -> str:
    return getattr(fn, "__name__", repr(fn))


class ErrorHandling:
    @staticmethod
    def recall(fn: Callable[[], Any], fix: Union[Fix, List[Fix]],
               handled: Tuple[Type[BaseException], ...] = (Exception,)) -> Any:
        """
        Run `fn`; when it fails with a `handled` error, apply each fix in turn and run
        `fn` again after it. Other errors propagate unchanged.

        Raises:
            TypeError: If `fn` or any fix is not callable.
            RuntimeError: If `fn` still fails after the last fix.
        """
        fixes = list(fix) if isinstance(fix, (list, tuple)) else [fix]
        for candidate in [fn] + fixes:
            if not callable(candidate):
                raise TypeError(f"[recall] Not callable: {candidate!r}")

        try:
            return fn()
        except handled as first:
            logger.debug(f"[recall] {_label(fn)} failed: {first}")

        for n, remedy in enumerate(fixes, 1):
            try:
                logger.debug(f"[recall] Applying fix {n}/{len(fixes)}: {_label(remedy)}")
                remedy()
                return fn()
            except handled as still:
                logger.debug(f"[recall] Fix {n}/{len(fixes)} did not help: {still}")

        raise RuntimeError(f"[recall] {_label(fn)} still fails after {len(fixes)} fix(es)")

    @staticmethod
    def attempt(
            fn: Callable[[], Any],
            retries: int = 1,
            handled: Tuple[Type[BaseException], ...] = (Exception,),
            label: str = "operation",
    ) -> Any:
        """
        Call `fn` up to `retries` times. Only `handled` errors count as a failed try;
        the last one is re-raised. Anything else propagates at once.
        """
        if retries < 1:
            raise ValueError(f"[{label}] retries must be >= 1, got {retries}")

        for n in range(1, retries + 1):
            try:
                return fn()
            except handled as e:
                logger.debug(f"[{label}] Try {n} of {retries} failed: {e}")
                if n == retries:
                    raise

    @staticmethod
    def check_types(arg: Any, expected: Union[Type, Tuple[Type, ...], list], label: str = "check_types") -> Any:
        """
        Return `arg` unchanged if it, or every item of a list `arg`, is an `expected` instance.
        """
        if isinstance(expected, list):
            expected = tuple(expected)
        if not isinstance(expected, (type, tuple)):
            raise TypeError(f"[{label}] Invalid 'expected' type: {type(expected)}")

        wanted = expected if isinstance(expected, tuple) else (expected,)
        for item in arg if isinstance(arg, list) else [arg]:
            if not isinstance(item, wanted):
                names = "/".join(t.__name__ for t in wanted)
                raise TypeError(f"[{label}] Expected {names}, got {type(item).__name__}")
        return arg


attempt = ErrorHandling.attempt
recall = ErrorHandling.recall
check_types = ErrorHandling.check_types
