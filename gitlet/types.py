from typing import TypeAlias, NamedTuple, Literal, Optional

Path: TypeAlias = str  # a path relative to the working tree, '/' separated
OID: TypeAlias = str  # hash
TreeMap: TypeAlias = dict[Path, OID]
ObjectType: TypeAlias = Literal['blob', 'commit']
MergeOutcome: TypeAlias = Literal['already_ancestor', 'fast_forward', 'merged']
MergeAction: TypeAlias = Literal['take', 'delete', 'conflict']
FileChange: TypeAlias = Literal['new_file', 'deleted', 'modified']


class Commit(NamedTuple):
    message: str
    timestamp: int
    parents: tuple[OID, ...]  # () for the root, two for a merge commit
    snapshot: TreeMap
    branch: str
    depth: int

    @property
    def parent(self) -> Optional[OID]:
        return self.parents[0] if self.parents else None

    @property
    def is_merge(self) -> bool:
        return len(self.parents) == 2


class MergeResult(NamedTuple):
    outcome: MergeOutcome
    commit: Optional[OID] = None
    conflict: bool = False


class Status(NamedTuple):
    branches: list[str]
    current_branch: str
    staged: list[Path]
    removed: list[Path]
    modified: list[tuple[Path, FileChange]]  # never 'new_file'
    untracked: list[Path]
