import os
import string
import time

from collections import deque
from typing import Iterable, Optional

from loguru import logger

from . import data, diff
from . import types
from .errors import (
    AmbiguousCommitId,
    FatalError,
    NoChanges,
    NotFoundError,
    NothingToRemove,
    ObjectNotFound,
    StateError,
    UncommittedChanges,
    UntrackedConflict,
    UsageError,
)

DEFAULT_BRANCH = 'master'
INITIAL_MESSAGE = 'initial commit'
IGNORED_NAMES = {data.GIT_DIR, '.git'}


def init(work_dir='.') -> data.Repository:
    repo = data.Repository.at(work_dir)
    if repo.exists():
        raise StateError('A Gitlet version-control system already exists in the current directory.')
    os.makedirs(repo.git_dir, exist_ok=True)

    # Epoch timestamp makes the root commit identical in every repository
    root = create_commit(repo, INITIAL_MESSAGE, None, {}, DEFAULT_BRANCH, 0, timestamp=0)
    repo.state = data.RepoState(current_branch=DEFAULT_BRANCH, branches={DEFAULT_BRANCH: root})
    repo.save()
    logger.info(f'Initialized empty Gitlet repository in {repo.git_dir}')
    return repo


# Commits

def _serialize_commit(commit_: types.Commit) -> bytes:
    lines = [f'timestamp {commit_.timestamp}']
    lines.extend(f'parent {parent}' for parent in commit_.parents)
    lines.append(f'branch {commit_.branch}')
    lines.append(f'depth {commit_.depth}')
    lines.extend(f'blob {oid} {path}' for path, oid in sorted(commit_.snapshot.items()))
    # an empty line separates the key-value pairs from the message
    return ('\n'.join(lines) + '\n\n' + commit_.message).encode()


def _parse_commit(oid: types.OID, raw: bytes) -> types.Commit:
    fields = {'parents': [], 'snapshot': {}}
    try:
        header, _, message = raw.decode().partition('\n\n')
        for line in header.splitlines():
            key, value = line.split(' ', 1)
            if key == 'timestamp':
                fields['timestamp'] = int(value)
            elif key == 'parent':
                fields['parents'].append(value)
            elif key == 'branch':
                fields['branch'] = value
            elif key == 'depth':
                fields['depth'] = int(value)
            elif key == 'blob':
                blob_oid, path = value.split(' ', 1)
                fields['snapshot'][path] = blob_oid
            else:
                raise ValueError(f'Unknown field {key}')
        return types.Commit(message=message,
                            timestamp=fields['timestamp'],
                            parents=tuple(fields['parents']),
                            snapshot=fields['snapshot'],
                            branch=fields['branch'],
                            depth=fields['depth'])
    except (KeyError, ValueError) as e:
        raise FatalError(f'Corrupted commit {oid}: {e}') from e


def get_commit(repo: data.Repository, oid: types.OID) -> types.Commit:
    commit_ = repo.commit_cache.get(oid)
    if commit_ is None:
        commit_ = _parse_commit(oid, repo.objects.get_object(oid, 'commit'))
        repo.commit_cache[oid] = commit_
    return commit_


def write_commit(repo: data.Repository, commit_: types.Commit) -> types.OID:
    oid = repo.objects.hash_object(_serialize_commit(commit_), 'commit')
    repo.commit_cache[oid] = commit_
    return oid


def create_commit(repo, message, parent, snapshot, branch, depth, timestamp=None) -> types.OID:
    if timestamp is None:
        timestamp = int(time.time())
    parents = (parent,) if parent else ()
    return write_commit(repo, types.Commit(message, timestamp, parents, dict(snapshot), branch, depth))


def create_merge_commit(repo, message, parent1, parent2, snapshot, branch, depth,
                        timestamp=None) -> types.OID:
    if timestamp is None:
        timestamp = int(time.time())
    return write_commit(repo, types.Commit(message, timestamp, (parent1, parent2), dict(snapshot),
                                           branch, depth))


def resolve_prefix(repo: data.Repository, prefix: str) -> types.OID:
    """
    Expand an abbreviated commit id. More than one match is rejected rather
    than picking one, so the answer never depends on directory order.
    """
    if not prefix:
        raise UsageError()
    if not all(c in string.hexdigits for c in prefix):
        raise NotFoundError('No commit with that id exists.')
    if repo.objects.has_object(prefix, 'commit'):
        return prefix

    matches = [oid for oid in repo.objects.iter_objects('commit') if oid.startswith(prefix)]
    if not matches:
        raise NotFoundError('No commit with that id exists.')
    if len(matches) > 1:
        raise AmbiguousCommitId(
            f'Commit id {prefix} is ambiguous: {", ".join(m[:10] for m in matches)}.')
    return matches[0]


def iter_commits_and_parents(repo: data.Repository, oids: Iterable[types.OID]) -> Iterable[types.OID]:
    oids = deque(oids)
    visited = set()

    while oids:
        oid = oids.popleft()
        if not oid or oid in visited:
            continue
        visited.add(oid)
        yield oid

        commit_ = get_commit(repo, oid)
        oids.extendleft(commit_.parents[:1])
        oids.extend(commit_.parents[1:])


def ancestors(repo: data.Repository, oid: types.OID) -> frozenset[types.OID]:
    """The commit itself and everything reachable through its parents."""
    cached = repo.ancestor_cache.get(oid)
    if cached is not None:
        return cached

    result = set()
    pending = deque([oid])
    while pending:
        current = pending.popleft()
        if current in result:
            continue
        known = repo.ancestor_cache.get(current)
        if known is not None:
            result |= known
            continue
        result.add(current)
        pending.extend(get_commit(repo, current).parents)

    repo.ancestor_cache[oid] = frozenset(result)
    return repo.ancestor_cache[oid]


def get_split_point(repo: data.Repository, head: types.OID, other: types.OID) -> types.OID:
    """
    Deepest common ancestor of `head` and `other`; on equal depth the first
    one met walking back from `head` wins. Criss-cross histories can have
    several candidates of equal merit and only one of them is chosen.
    """
    common = ancestors(repo, head) & ancestors(repo, other)
    split, split_depth = None, -1
    for oid in iter_commits_and_parents(repo, [head]):
        if oid in common:
            depth = get_commit(repo, oid).depth
            if depth > split_depth:
                split, split_depth = oid, depth

    if split is None:
        raise StateError('The two histories share no common commit.')
    logger.debug(f'split point of {head[:7]} and {other[:7]} is {split[:7]}')
    return split


def get_blob(repo: data.Repository, oid: types.OID) -> bytes:
    """Contents of a blob referenced by a commit snapshot."""
    try:
        return repo.objects.get_object(oid)
    except ObjectNotFound as e:
        # snapshots only ever name stored blobs
        raise FatalError(f'Object store is missing blob {oid}.') from e


def get_head_snapshot(repo: data.Repository) -> types.TreeMap:
    return get_commit(repo, repo.head).snapshot


def _move_branch(repo: data.Repository, branch: str, oid: types.OID) -> None:
    logger.debug(f'{branch}: {repo.state.branches.get(branch, "none")[:7]} -> {oid[:7]}')
    repo.state.branches[branch] = oid


# Working tree

def normalize_path(path: str) -> types.Path:
    path = os.path.normpath(path).replace('\\', '/')
    if os.path.isabs(path) or path == '..' or path.startswith('../'):
        raise NotFoundError('File does not exist.')
    return path


def is_ignored(path: types.Path) -> bool:
    return any(part in IGNORED_NAMES for part in path.split('/'))


def read_work_file(repo: data.Repository, path: types.Path) -> Optional[bytes]:
    full_path = repo.work_path(path)
    if not os.path.isfile(full_path):
        return None
    with open(full_path, 'rb') as f:
        return f.read()


def write_work_file(repo: data.Repository, path: types.Path, content: bytes) -> None:
    full_path = repo.work_path(path)
    os.makedirs(os.path.dirname(full_path), exist_ok=True)
    with open(full_path, 'wb') as f:
        f.write(content)


def delete_work_file(repo: data.Repository, path: types.Path) -> None:
    full_path = repo.work_path(path)
    if os.path.isfile(full_path):
        os.remove(full_path)

    dirname = os.path.dirname(full_path)
    while dirname != repo.work_dir and dirname.startswith(repo.work_dir):
        try:
            os.rmdir(dirname)
        except OSError:
            break  # not empty
        dirname = os.path.dirname(dirname)


def get_working_tree(repo: data.Repository) -> types.TreeMap:
    result = {}
    for root, dirnames, filenames in os.walk(repo.work_dir):
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_NAMES)
        for filename in filenames:
            path = os.path.relpath(os.path.join(root, filename), repo.work_dir).replace('\\', '/')
            if is_ignored(path) or not os.path.isfile(os.path.join(root, filename)):
                continue
            result[path] = data.hash_bytes(read_work_file(repo, path))
    return result


def get_untracked_files(repo: data.Repository) -> list[types.Path]:
    tracked = get_head_snapshot(repo)
    state = repo.state
    return sorted(path for path in get_working_tree(repo)
                  if path not in state.staged_additions
                  and (path not in tracked or path in state.staged_removals))


def read_tree(repo: data.Repository, t_from: types.TreeMap, t_to: types.TreeMap) -> None:
    """
    Replace the files tracked by `t_from` with the contents of `t_to`. Every
    blob is read before the first file is touched.
    """
    contents = {path: get_blob(repo, oid) for path, oid in sorted(t_to.items())}
    for path in t_from:
        if path not in t_to:
            delete_work_file(repo, path)
    for path, content in contents.items():
        write_work_file(repo, path, content)


# Staging area

def _stage_content(repo: data.Repository, path: types.Path, content: bytes) -> None:
    state = repo.state
    oid = data.hash_bytes(content)
    if get_head_snapshot(repo).get(path) == oid:
        # back to the committed version, nothing to stage
        state.staged_additions.pop(path, None)
    else:
        repo.stage.hash_object(content)
        state.staged_additions[path] = oid
    state.staged_removals.pop(path, None)


def add(repo: data.Repository, path: str) -> None:
    path = normalize_path(path)
    content = read_work_file(repo, path)
    if content is None or is_ignored(path):
        raise NotFoundError('File does not exist.')
    _stage_content(repo, path, content)


def remove(repo: data.Repository, path: str) -> None:
    path = normalize_path(path)
    state = repo.state
    tracked = get_head_snapshot(repo)
    if path not in tracked and path not in state.staged_additions:
        raise NothingToRemove()

    state.staged_additions.pop(path, None)
    if path in tracked:
        state.staged_removals[path] = tracked[path]
        delete_work_file(repo, path)


def has_staged_changes(repo: data.Repository) -> bool:
    return bool(repo.state.staged_additions or repo.state.staged_removals)


def clear_staging(repo: data.Repository) -> None:
    repo.state.staged_additions = {}
    repo.state.staged_removals = {}


def _apply_staging(repo: data.Repository, snapshot: types.TreeMap) -> types.TreeMap:
    """Copy staged content into the object store and return the new snapshot."""
    snapshot = dict(snapshot)
    state = repo.state
    for path, oid in sorted(state.staged_additions.items()):
        repo.objects.hash_object(repo.stage.get_object(oid))
        snapshot[path] = oid
    for path in state.staged_removals:
        snapshot.pop(path, None)
    clear_staging(repo)
    return snapshot


def commit(repo: data.Repository, message: str) -> types.OID:
    if not message:
        raise UsageError('Please enter a commit message.')
    if not has_staged_changes(repo):
        raise NoChanges()

    head = repo.head
    c_head = get_commit(repo, head)
    branch = repo.state.current_branch
    snapshot = _apply_staging(repo, c_head.snapshot)
    oid = create_commit(repo, message, head, snapshot, branch, c_head.depth + 1)
    _move_branch(repo, branch, oid)
    logger.info(f'[{branch} {oid[:7]}] {message}')
    return oid


# Checkout, branches, history

def checkout_file(repo: data.Repository, path: str, commit_id: Optional[str] = None) -> None:
    oid = repo.head if commit_id is None else resolve_prefix(repo, commit_id)
    path = normalize_path(path)
    blob = get_commit(repo, oid).snapshot.get(path)
    if blob is None:
        raise NotFoundError('File does not exist in that commit.')
    write_work_file(repo, path, get_blob(repo, blob))


def _checkout_commit(repo: data.Repository, oid: types.OID) -> None:
    t_head = get_head_snapshot(repo)
    t_to = get_commit(repo, oid).snapshot
    if any(path in t_to for path in get_untracked_files(repo)):
        raise UntrackedConflict()
    read_tree(repo, t_head, t_to)
    clear_staging(repo)


def checkout_branch(repo: data.Repository, name: str) -> None:
    state = repo.state
    if name == state.current_branch:
        raise StateError('No need to checkout the current branch.')
    if name not in state.branches:
        raise NotFoundError('No such branch exists.')
    _checkout_commit(repo, state.branches[name])
    state.current_branch = name
    logger.debug(f'switched to {name}')


def reset(repo: data.Repository, commit_id: str) -> None:
    oid = resolve_prefix(repo, commit_id)
    _checkout_commit(repo, oid)
    _move_branch(repo, repo.state.current_branch, oid)


def create_branch(repo: data.Repository, name: str) -> None:
    if name in repo.state.branches:
        raise StateError('A branch with that name already exists.')
    _move_branch(repo, name, repo.head)


def remove_branch(repo: data.Repository, name: str) -> None:
    state = repo.state
    if name == state.current_branch:
        raise StateError('Cannot remove the current branch.')
    if name not in state.branches:
        raise NotFoundError('A branch with that name does not exist.')
    del state.branches[name]


def iter_log(repo: data.Repository) -> Iterable[tuple[types.OID, types.Commit]]:
    oid = repo.head
    while oid:
        commit_ = get_commit(repo, oid)
        yield oid, commit_
        oid = commit_.parent


def iter_all_commits(repo: data.Repository) -> Iterable[tuple[types.OID, types.Commit]]:
    for oid in repo.objects.iter_objects('commit'):
        yield oid, get_commit(repo, oid)


def find(repo: data.Repository, message: str) -> list[types.OID]:
    found = [oid for oid, commit_ in iter_all_commits(repo) if commit_.message == message]
    if not found:
        raise NotFoundError('Found no commit with that message.')
    return found


def get_status(repo: data.Repository) -> types.Status:
    state = repo.state
    # what the next commit would record
    expected = {path: oid for path, oid in get_head_snapshot(repo).items()
                if path not in state.staged_removals}
    expected.update(state.staged_additions)

    # new files are reported as untracked instead
    modified = [(path, action)
                for path, action in diff.iter_changed_files(expected, get_working_tree(repo))
                if action != 'new_file']

    return types.Status(branches=sorted(state.branches),
                        current_branch=state.current_branch,
                        staged=sorted(state.staged_additions),
                        removed=sorted(state.staged_removals),
                        modified=modified,
                        untracked=get_untracked_files(repo))


# Merge

def merge(repo: data.Repository, branch: str) -> types.MergeResult:
    state = repo.state
    current = state.current_branch
    if branch == current:
        raise StateError('Cannot merge a branch with itself.')
    if branch not in state.branches:
        raise NotFoundError('A branch with that name does not exist.')

    head, other = repo.head, state.branches[branch]
    split = get_split_point(repo, head, other)
    c_base, c_head, c_other = (get_commit(repo, oid) for oid in (split, head, other))
    plan = diff.merge_trees(c_base.snapshot, c_head.snapshot, c_other.snapshot)

    if set(get_untracked_files(repo)) & plan.keys():
        raise UntrackedConflict()
    if has_staged_changes(repo):
        raise UncommittedChanges()

    if split == other:
        return types.MergeResult('already_ancestor')
    if split == head:
        read_tree(repo, c_head.snapshot, c_other.snapshot)
        _move_branch(repo, current, other)
        return types.MergeResult('fast_forward', other)

    contents = {}
    for path, action in plan.items():
        if action == 'take':
            contents[path] = get_blob(repo, c_other.snapshot[path])
        elif action == 'conflict':
            o_head, o_other = c_head.snapshot.get(path), c_other.snapshot.get(path)
            contents[path] = diff.conflict_content(o_head and get_blob(repo, o_head),
                                                   o_other and get_blob(repo, o_other))

    conflict = False
    for path, action in plan.items():
        if action == 'delete':
            remove(repo, path)
            continue
        write_work_file(repo, path, contents[path])
        _stage_content(repo, path, contents[path])
        if action == 'conflict':
            conflict = True
            logger.debug(f'conflict in {path}')

    message = f'Merged {branch} into {current}.'
    snapshot = _apply_staging(repo, c_head.snapshot)
    oid = create_merge_commit(repo, message, head, other, snapshot, current,
                              max(c_head.depth, c_other.depth) + 1)
    _move_branch(repo, current, oid)
    logger.info(f'[{current} {oid[:7]}] {message}')
    return types.MergeResult('merged', oid, conflict)
