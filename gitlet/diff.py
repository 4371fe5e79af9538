from collections import defaultdict
from typing import Iterable, Optional
from typing_extensions import Unpack

from . import types

CONFLICT_HEAD = b'<<<<<<< HEAD\n'
CONFLICT_SEP = b'=======\n'
CONFLICT_END = b'>>>>>>>\n'


def compare_trees(*trees: types.TreeMap) -> Iterable[tuple[types.Path, Unpack[tuple[Optional[types.OID], ...]]]]:
    entries = defaultdict(lambda: [None] * len(trees))
    for i, tree in enumerate(trees):
        for path, oid in tree.items():
            entries[path][i] = oid

    for path in sorted(entries):
        yield path, *entries[path]


def iter_changed_files(t_expected: types.TreeMap,
                       t_actual: types.TreeMap) -> Iterable[tuple[types.Path, types.FileChange]]:
    """Paths whose blob in `t_actual` differs from the one `t_expected` records."""
    for path, o_expected, o_actual in compare_trees(t_expected, t_actual):
        if o_expected == o_actual:
            continue
        if o_expected is None:
            yield path, 'new_file'
        elif o_actual is None:
            yield path, 'deleted'
        else:
            yield path, 'modified'


def merge_blobs(o_base: Optional[types.OID], o_head: Optional[types.OID],
                o_other: Optional[types.OID]) -> Optional[types.MergeAction]:
    """
    Three-way decision for a single path. Any of the ids may be None when the
    path is absent from that side. Returns None when the current side is kept
    as it is.
    """
    if o_head == o_other:
        # unchanged, changed identically, or deleted on both sides
        return None
    if o_head == o_base:
        # only the other side moved: follow it
        return 'take' if o_other else 'delete'
    if o_other == o_base:
        return None
    return 'conflict'


def merge_trees(t_base: types.TreeMap, t_head: types.TreeMap,
                t_other: types.TreeMap) -> dict[types.Path, types.MergeAction]:
    plan = {}
    for path, o_base, o_head, o_other in compare_trees(t_base, t_head, t_other):
        action = merge_blobs(o_base, o_head, o_other)
        if action:
            plan[path] = action
    return plan


def conflict_content(head: Optional[bytes], other: Optional[bytes]) -> bytes:
    return (CONFLICT_HEAD + (head or b'') +
            CONFLICT_SEP + (other or b'') +
            CONFLICT_END)
