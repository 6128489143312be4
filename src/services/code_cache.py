from __future__ import annotations

import logging
from collections.abc import Iterable

from ..db.store import ImportStore, ReferenceStoreUnavailable, StoreError
from ..models.code_domain import CodeDomain

"""Code reference loading for one import session.

The allowed values of every code field are read once, up front, and frozen into
a CodeDomain that the validator receives explicitly. Loading is all-or-nothing:
if any lookup fails the pass fails with ReferenceStoreUnavailable instead of
continuing with an empty list.
"""

logger = logging.getLogger(__name__)


def resolve_code_fields(store: ImportStore, extra_code_fields: Iterable[str]) -> frozenset[str]:
    """Fields backed by a code list: the store's code headers plus configured extras."""
    try:
        headers = store.fetch_code_headers()
    except ReferenceStoreUnavailable:
        raise
    except StoreError as e:
        raise ReferenceStoreUnavailable(f"failed to retrieve code headers: {e}") from e
    return frozenset(headers) | frozenset(extra_code_fields)


def load_code_domain(store: ImportStore, fields: Iterable[str]) -> CodeDomain:
    """Load allowed values for ``fields`` into an immutable CodeDomain.

    Raises:
        ReferenceStoreUnavailable: any single lookup failed.
    """
    values: dict[str, list[str]] = {}
    for field_name in sorted(set(fields)):
        try:
            descriptions = store.fetch_code_descriptions(field_name)
        except ReferenceStoreUnavailable:
            raise
        except StoreError as e:
            raise ReferenceStoreUnavailable(f"failed to retrieve codes for {field_name}: {e}") from e
        values[field_name] = [str(d) for d in descriptions]
        logger.debug("code domain field=%s values=%d", field_name, len(values[field_name]))
    return CodeDomain.build(values)
