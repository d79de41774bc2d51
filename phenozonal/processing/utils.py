import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable, Iterator, Optional, Set, TypeVar

from tqdm import tqdm

from phenozonal.config import config

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Cooperative cancellation flag, checked between per-raster work units."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def run_per_raster(
    func: Callable[[T], R],
    items: Iterable[T],
    n_workers: int = 1,
    cancel_token: Optional[CancellationToken] = None,
    desc: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> Iterator[R]:
    """
    Lazily apply `func` to every item, optionally on a bounded thread pool.

    At most ``2 * n_workers`` items are in flight, so `items` is pulled
    incrementally. With more than one worker, results are yielded in
    completion order. Cancellation is checked before each item is pulled;
    work already running is allowed to finish.
    """
    logger = logger or config.get_logger(__name__)
    completed = 0
    iterator = iter(items)

    def cancelled() -> bool:
        return cancel_token is not None and cancel_token.cancelled

    with tqdm(
        desc=desc,
        unit="raster",
        file=config.get_tqdm_logger_stream(logger),
        disable=desc is None,
    ) as pbar:
        if n_workers <= 1:
            while not cancelled():
                try:
                    item = next(iterator)
                except StopIteration:
                    break
                result = func(item)
                completed += 1
                pbar.update(1)
                yield result
        else:
            pending: Set[Future] = set()
            exhausted = False

            with ThreadPoolExecutor(max_workers=n_workers) as executor:

                def fill():
                    nonlocal exhausted
                    while not exhausted and len(pending) < 2 * n_workers:
                        if cancelled():
                            return
                        try:
                            item = next(iterator)
                        except StopIteration:
                            exhausted = True
                            return
                        pending.add(executor.submit(func, item))

                fill()
                while pending:
                    done, _ = wait(pending, return_when=FIRST_COMPLETED)
                    for future in done:
                        pending.discard(future)
                        result = future.result()
                        completed += 1
                        pbar.update(1)
                        yield result
                    fill()

    if cancelled():
        logger.warning(f"Cancelled after {completed} completed work unit(s)")
