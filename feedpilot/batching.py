# feedpilot/batching.py
from typing import Callable, Iterable, List, Sequence, TypeVar

T = TypeVar("T")

CONTENT_CHAR_LIMIT = 4000           # per-article ceiling before batching
DEFAULT_BATCH_CHAR_BUDGET = 200_000  # roughly a provider's context budget


def truncate(text: str, max_chars: int = CONTENT_CHAR_LIMIT) -> str:
    if not text:
        return ""
    return text[:max_chars]


def pack_batches(items: Iterable[T], size: Callable[[T], int],
                 budget: int = DEFAULT_BATCH_CHAR_BUDGET) -> List[List[T]]:
    """
    Greedy char-budget packer. Items keep their order; a new batch starts as
    soon as adding the next item would push the running total over `budget`.
    An item larger than the budget on its own gets a batch to itself.
    There is no per-batch count limit.
    """
    batches: List[List[T]] = []
    current: List[T] = []
    total = 0
    for item in items:
        n = size(item)
        if current and total + n > budget:
            batches.append(current)
            current, total = [], 0
        current.append(item)
        total += n
    if current:
        batches.append(current)
    return batches


def batch_chars(batch: Sequence[T], size: Callable[[T], int]) -> int:
    return sum(size(it) for it in batch)
