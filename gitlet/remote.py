"""
Synchronization with other repositories addressed by directory.

Objects are always transferred oldest commit first, and every commit's blobs
are written before the commit itself. An interrupted transfer therefore
leaves the destination with a consistent prefix of the history, and a retry
skips whatever already arrived.
"""
import os
from collections import deque
from contextlib import contextmanager
from typing import Iterator

from loguru import logger

from . import base, data
from . import types
from .errors import NonFastForward, NotFoundError, StateError

REMOTE_NOT_FOUND = 'Remote directory not found.'


def add_remote(repo: data.Repository, name: str, address: str) -> None:
    if name in repo.state.remotes:
        raise StateError('A remote with that name already exists.')
    repo.state.remotes[name] = address.replace('/', os.sep)


def remove_remote(repo: data.Repository, name: str) -> None:
    if name not in repo.state.remotes:
        raise NotFoundError('A remote with that name does not exist.')
    del repo.state.remotes[name]


def tracking_branch(remote_name: str, branch: str) -> str:
    return f'{remote_name}/{branch}'


@contextmanager
def _open_remote(repo: data.Repository, name: str, readonly=False) -> Iterator[data.Repository]:
    address = repo.state.remotes.get(name)
    if address is None:
        raise NotFoundError(REMOTE_NOT_FOUND)
    git_dir = os.path.join(repo.work_dir, address)
    if not data.Repository(git_dir).exists():
        raise NotFoundError(REMOTE_NOT_FOUND)
    if os.path.realpath(git_dir) == os.path.realpath(repo.git_dir):
        # the caller already holds this repository's lock
        raise StateError('A remote cannot be the repository itself.')
    with data.session(git_dir, readonly=readonly) as remote:
        yield remote


def _missing_commits(source: data.Repository, dest: data.Repository,
                     head: types.OID) -> list[types.OID]:
    """
    Commits reachable from `head` in `source` that `dest` lacks, parents
    before children. Traversal stops at commits `dest` already has, since
    those arrived together with their whole history.
    """
    missing = []
    seen = set()
    pending = deque([head])
    while pending:
        oid = pending.popleft()
        if oid in seen or dest.objects.has_object(oid, 'commit'):
            continue
        seen.add(oid)
        missing.append(oid)
        pending.extend(base.get_commit(source, oid).parents)

    # a commit is always deeper than each of its parents
    return sorted(missing, key=lambda oid: base.get_commit(source, oid).depth)


def _copy_commits(source: data.Repository, dest: data.Repository,
                  oids: list[types.OID]) -> None:
    blobs = 0
    for oid in oids:
        for blob in sorted(set(base.get_commit(source, oid).snapshot.values())):
            if not dest.objects.has_object(blob):
                dest.objects.hash_object(source.objects.get_object(blob))
                blobs += 1
        dest.objects.hash_object(source.objects.get_object(oid, 'commit'), 'commit')
    logger.debug(f'copied {len(oids)} commits and {blobs} blobs '
                 f'from {source.git_dir} to {dest.git_dir}')


def _reaches(repo: data.Repository, head: types.OID, target: types.OID) -> bool:
    """Whether `target` lies on the first-parent chain of `head`."""
    oid = head
    while oid:
        if oid == target:
            return True
        oid = base.get_commit(repo, oid).parent
    return False


def push(repo: data.Repository, remote_name: str, branch: str) -> None:
    head = repo.head
    with _open_remote(repo, remote_name) as remote:
        remote_head = remote.state.branches.get(branch)
        if remote_head is not None and not _reaches(repo, head, remote_head):
            raise NonFastForward()

        _copy_commits(repo, remote, _missing_commits(repo, remote, head))
        # moves the remote HEAD as well when `branch` is checked out there
        remote.state.branches[branch] = head
    logger.info(f'pushed {head[:7]} to {remote_name}/{branch}')


def fetch(repo: data.Repository, remote_name: str, branch: str) -> types.OID:
    with _open_remote(repo, remote_name, readonly=True) as remote:
        remote_head = remote.state.branches.get(branch)
        if remote_head is None:
            raise NotFoundError('That remote does not have that branch.')
        _copy_commits(remote, repo, _missing_commits(remote, repo, remote_head))

    repo.state.branches[tracking_branch(remote_name, branch)] = remote_head
    logger.info(f'fetched {remote_name}/{branch} at {remote_head[:7]}')
    return remote_head


def pull(repo: data.Repository, remote_name: str, branch: str) -> types.MergeResult:
    fetch(repo, remote_name, branch)
    return base.merge(repo, tracking_branch(remote_name, branch))
