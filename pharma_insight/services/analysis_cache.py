"""Process-wide cache of generated analyses with staleness tracking.

Keys are derived from (subject kind, subject id, discriminators); entries
are opaque to the cache. A key can be marked stale independently of
whether an entry is stored for it, and every marking bumps a refresh
counter that subscribers use as a "re-check your own key" signal.
"""

import math
import numbers
import threading
from typing import Any, Callable, Generic, Iterable, TypeVar

from loguru import logger

from pharma_insight.models.enums import SubjectKind

T = TypeVar("T")

KEY_SEPARATOR = "-"

# (slot name, labelled, required) per subject kind, in key order.
# Unlabelled slots are written verbatim; labelled slots render as
# "{slot}-{value}" or the "no-{slot}" sentinel when the value is missing.
_KEY_LAYOUT: dict[SubjectKind, tuple[tuple[str, bool, bool], ...]] = {
    SubjectKind.PRODUCT: (("period", False, True),),
    SubjectKind.PROVINCE: (("period", False, True),),
    SubjectKind.TARGET_PLAN: (("growth", True, False),),
}


def _format_number(value: Any) -> str:
    """Canonical text for a numeric discriminator (15 and 15.0 agree)."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValueError(f"Expected a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Non-finite discriminator: {value!r}")
    if number.is_integer():
        return str(int(number))
    return repr(number)


def derive_key(
    kind: SubjectKind | str,
    subject_id: str,
    discriminators: Iterable[Any] = (),
) -> str:
    """Build the cache key for one logical analysis input.

    Pure and deterministic. Raises ``ValueError`` for ill-formed input:
    unknown kind, empty id, wrong number of discriminators, a missing
    required discriminator, or a separator inside a token that is not
    the last one.

    >>> derive_key(SubjectKind.PRODUCT, "P001", ["2024-Q1"])
    'product-P001-2024-Q1'
    >>> derive_key(SubjectKind.TARGET_PLAN, "ind007", [None])
    'targetplan-ind007-no-growth'
    """
    kind = SubjectKind(kind)
    layout = _KEY_LAYOUT[kind]
    values = list(discriminators)
    if len(values) != len(layout):
        raise ValueError(
            f"{kind.value} keys take {len(layout)} discriminator(s), got {len(values)}"
        )
    if not isinstance(subject_id, str) or not subject_id:
        raise ValueError("subject_id must be a non-empty string")

    tokens = [kind.value, subject_id]
    for (slot, labelled, required), value in zip(layout, values):
        if value is None:
            if required:
                raise ValueError(f"{kind.value} keys require a {slot}")
            tokens.append(f"no{KEY_SEPARATOR}{slot}")
        elif labelled:
            tokens.append(f"{slot}{KEY_SEPARATOR}{_format_number(value)}")
        else:
            text = str(value)
            if not text:
                raise ValueError(f"Empty {slot} for {kind.value} key")
            tokens.append(text)

    # Only the final token may contain the separator, otherwise
    # ("a-b", "c") and ("a", "b-c") would share a key.
    for token in tokens[:-1]:
        if KEY_SEPARATOR in token:
            raise ValueError(f"Separator {KEY_SEPARATOR!r} not allowed in {token!r}")

    return KEY_SEPARATOR.join(tokens)


def product_key(product_id: str, period: str) -> str:
    return derive_key(SubjectKind.PRODUCT, product_id, [period])


def province_key(province_id: str, period: str) -> str:
    return derive_key(SubjectKind.PROVINCE, province_id, [period])


def target_plan_key(indicator_id: str, growth: float | None = None) -> str:
    return derive_key(SubjectKind.TARGET_PLAN, indicator_id, [growth])


def _check_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        raise ValueError(f"Cache key must be a non-empty string, got {key!r}")


class AnalysisCache(Generic[T]):
    """Thread-safe store of analyses plus a stale-key set.

    Entries are replaced whole on ``set`` and never inspected. Staleness
    and presence are independent: deleting an entry keeps its stale
    flag, and marking a key stale keeps its entry readable.
    """

    def __init__(self) -> None:
        self._store: dict[str, T] = {}
        self._stale: set[str] = set()
        self._refresh_counter = 0
        self._subscribers: list[Callable[[int], None]] = []
        self._lock = threading.Lock()

    # ── Entries ──

    def get(self, key: str) -> T | None:
        _check_key(key)
        with self._lock:
            return self._store.get(key)

    def set(self, key: str, entry: T) -> None:
        _check_key(key)
        with self._lock:
            self._store[key] = entry
        logger.debug("Cache SET: {}", key)

    def delete(self, key: str) -> None:
        _check_key(key)
        with self._lock:
            self._store.pop(key, None)
        logger.debug("Cache DELETE: {}", key)

    def clear(self) -> int:
        """Drop every stored entry. Returns how many were removed."""
        with self._lock:
            n = len(self._store)
            self._store.clear()
        logger.info("Cache cleared ({} entries)", n)
        return n

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._store)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store

    # ── Staleness ──

    @property
    def refresh_counter(self) -> int:
        return self._refresh_counter

    def mark_stale(self, key: str) -> int:
        """Flag *key* for recomputation and notify subscribers.

        The counter is bumped on every call, including for a key that is
        already stale. Returns the new counter value.
        """
        _check_key(key)
        with self._lock:
            self._stale.add(key)
            self._refresh_counter += 1
            counter = self._refresh_counter
            subscribers = list(self._subscribers)
        logger.info("Marked stale: {} (refresh #{})", key, counter)

        for callback in subscribers:
            try:
                callback(counter)
            except Exception:
                logger.opt(exception=True).warning("Refresh subscriber failed for {}", key)
        return counter

    def is_stale(self, key: str) -> bool:
        _check_key(key)
        with self._lock:
            return key in self._stale

    def clear_stale(self, key: str) -> None:
        _check_key(key)
        with self._lock:
            self._stale.discard(key)

    def stale_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._stale)

    def subscribe(self, callback: Callable[[int], None]) -> Callable[[], None]:
        """Call *callback(counter)* after every ``mark_stale``.

        Returns a function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
