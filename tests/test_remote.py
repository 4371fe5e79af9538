"""
Tests for push, fetch and pull between two repositories on disk.
"""

import os

import pytest

from gitlet import base, data, remote
from gitlet.errors import NonFastForward, NotFoundError, StateError, UncommittedChanges

from helpers import commit_file, commit_ids, read, write


@pytest.fixture
def local(tmp_path):
    path = tmp_path / 'local'
    path.mkdir()
    return base.init(str(path))


@pytest.fixture
def upstream(tmp_path):
    path = tmp_path / 'upstream'
    path.mkdir()
    return base.init(str(path))


@pytest.fixture
def origin(local, upstream):
    """Register `upstream` as the `origin` remote of `local`."""
    remote.add_remote(local, 'origin', upstream.git_dir)
    return 'origin'


def reload(repo):
    return data.Repository(repo.git_dir).load()


def commit_upstream(upstream, path, text, message):
    """Commit in the upstream repository and persist it, as a separate process would."""
    oid = commit_file(upstream, path, text, message)
    upstream.save()
    return oid


class TestRemotes:
    """Test registering and removing remotes."""

    def test_add_and_remove(self, local):
        """Test the remote map is updated."""
        remote.add_remote(local, 'origin', '../upstream/.gitlet')
        assert local.state.remotes == {'origin': os.path.join('..', 'upstream', '.gitlet')}

        remote.remove_remote(local, 'origin')
        assert local.state.remotes == {}

    def test_remote_errors(self, local):
        """Test duplicate and unknown remotes."""
        remote.add_remote(local, 'origin', '../upstream/.gitlet')

        with pytest.raises(StateError, match='A remote with that name already exists.'):
            remote.add_remote(local, 'origin', '../other/.gitlet')
        with pytest.raises(NotFoundError, match='A remote with that name does not exist.'):
            remote.remove_remote(local, 'nope')

    def test_unreachable_remote(self, local):
        """Test a remote whose directory does not exist."""
        remote.add_remote(local, 'gone', '../nowhere/.gitlet')

        with pytest.raises(NotFoundError, match='Remote directory not found.'):
            remote.push(local, 'gone', 'master')
        with pytest.raises(NotFoundError, match='Remote directory not found.'):
            remote.fetch(local, 'gone', 'master')
        with pytest.raises(NotFoundError, match='Remote directory not found.'):
            remote.push(local, 'unknown', 'master')

    def test_remote_pointing_at_itself(self, local):
        """Test a remote addressing the local repository is refused at once."""
        remote.add_remote(local, 'self', local.git_dir)
        local.save()

        with pytest.raises(StateError, match='A remote cannot be the repository itself.'):
            remote.push(local, 'self', 'master')
        with data.session(local.git_dir) as repo:
            with pytest.raises(StateError, match='A remote cannot be the repository itself.'):
                remote.fetch(repo, 'self', 'master')

    def test_relative_address(self, local, upstream):
        """Test addresses are resolved against the working directory."""
        remote.add_remote(local, 'origin', '../upstream/.gitlet')
        head = commit_file(local, 'a.txt', 'one', 'first')

        remote.push(local, 'origin', 'master')

        assert reload(upstream).state.branches['master'] == head


class TestPush:
    """Test pushing local history."""

    def test_push_fast_forward(self, local, upstream, origin):
        """Test commits and blobs arrive and the remote branch advances."""
        commit_file(local, 'a.txt', 'one', 'first')
        head = commit_file(local, 'b.txt', 'two', 'second')

        remote.push(local, origin, 'master')

        pushed = reload(upstream)
        assert pushed.state.branches['master'] == head
        assert pushed.head == head
        assert commit_ids(pushed) == commit_ids(local)
        assert pushed.objects.get_object(data.hash_bytes(b'two')) == b'two'

    def test_push_new_branch(self, local, upstream, origin):
        """Test a branch missing upstream is created at the local head."""
        head = commit_file(local, 'a.txt', 'one', 'first')

        remote.push(local, origin, 'feature')

        pushed = reload(upstream)
        assert pushed.state.branches['feature'] == head
        assert pushed.state.current_branch == 'master'
        assert base.get_commit(pushed, head).snapshot == {'a.txt': data.hash_bytes(b'one')}

    def test_push_rejected_when_remote_diverged(self, local, upstream, origin):
        """Test a remote head off the local first-parent chain is refused."""
        commit_upstream(upstream, 'theirs.txt', 'remote work', 'remote commit')
        commit_file(local, 'mine.txt', 'local work', 'local commit')
        before_commits = commit_ids(upstream)
        before_state = reload(upstream).state.to_dict()

        with pytest.raises(NonFastForward, match='Please pull down remote changes before pushing.'):
            remote.push(local, origin, 'master')

        assert commit_ids(upstream) == before_commits
        assert reload(upstream).state.to_dict() == before_state

    def test_push_copies_merged_history(self, local, upstream, origin):
        """Test both parents of merge commits reach the remote."""
        commit_file(local, 'a.txt', 'base', 'first')
        base.create_branch(local, 'feat')
        commit_file(local, 'm.txt', 'master', 'master change')
        base.checkout_branch(local, 'feat')
        commit_file(local, 'f.txt', 'feature', 'feature change')
        base.checkout_branch(local, 'master')
        merged = base.merge(local, 'feat').commit

        remote.push(local, origin, 'master')

        pushed = reload(upstream)
        assert base.ancestors(pushed, merged) == base.ancestors(local, merged)

    def test_push_resumes_partial_transfer(self, local, upstream, origin):
        """Test a retry after an interrupted push completes it."""
        first = commit_file(local, 'a.txt', 'one', 'first')
        head = commit_file(local, 'a.txt', 'two', 'second')
        upstream.objects.hash_object(local.objects.get_object(data.hash_bytes(b'one')))
        upstream.objects.hash_object(local.objects.get_object(first, 'commit'), 'commit')

        remote.push(local, origin, 'master')

        pushed = reload(upstream)
        assert pushed.state.branches['master'] == head
        assert commit_ids(pushed) == commit_ids(local)


class TestFetchAndPull:
    """Test bringing remote history in."""

    def test_fetch(self, local, upstream, origin):
        """Test fetch copies objects and sets the tracking branch only."""
        remote_head = commit_upstream(upstream, 'a.txt', 'remote', 'remote commit')
        local_head = local.head

        fetched = remote.fetch(local, origin, 'master')

        assert fetched == remote_head
        assert local.state.branches['origin/master'] == remote_head
        assert local.head == local_head
        assert local.state.current_branch == 'master'
        assert local.objects.get_object(data.hash_bytes(b'remote')) == b'remote'
        assert base.get_commit(local, remote_head).message == 'remote commit'

    def test_fetch_copies_merged_history(self, local, upstream, origin):
        """Test fetch brings in both parents of remote merge commits."""
        commit_upstream(upstream, 'a.txt', 'base', 'first')
        base.create_branch(upstream, 'feat')
        commit_file(upstream, 'm.txt', 'master', 'master change')
        base.checkout_branch(upstream, 'feat')
        commit_file(upstream, 'f.txt', 'feature', 'feature change')
        base.checkout_branch(upstream, 'master')
        merged = base.merge(upstream, 'feat').commit
        upstream.save()

        remote.fetch(local, origin, 'master')

        assert base.ancestors(local, merged) == base.ancestors(upstream, merged)
        assert local.objects.get_object(data.hash_bytes(b'feature')) == b'feature'

    def test_fetch_missing_branch(self, local, upstream, origin):
        """Test fetching a branch the remote does not have."""
        with pytest.raises(NotFoundError, match='That remote does not have that branch.'):
            remote.fetch(local, origin, 'nope')

    def test_fetch_does_not_touch_remote(self, local, upstream, origin):
        """Test the remote record is not rewritten by a fetch."""
        commit_upstream(upstream, 'a.txt', 'remote', 'remote commit')
        mtime = os.stat(upstream.state_path).st_mtime_ns

        remote.fetch(local, origin, 'master')

        assert os.stat(upstream.state_path).st_mtime_ns == mtime

    def test_pull_fast_forwards(self, local, upstream, origin):
        """Test pulling into an untouched branch fast-forwards it."""
        remote_head = commit_upstream(upstream, 'a.txt', 'remote', 'remote commit')

        result = remote.pull(local, origin, 'master')

        assert result.outcome == 'fast_forward'
        assert local.head == remote_head
        assert read(local, 'a.txt') == 'remote'

    def test_pull_merges_diverged_history(self, local, upstream, origin):
        """Test pulling diverged history produces a merge commit."""
        remote_head = commit_upstream(upstream, 'theirs.txt', 'remote', 'remote commit')
        local_head = commit_file(local, 'mine.txt', 'local', 'local commit')

        result = remote.pull(local, origin, 'master')

        assert result.outcome == 'merged'
        merge_commit = base.get_commit(local, result.commit)
        assert merge_commit.parents == (local_head, remote_head)
        assert merge_commit.message == 'Merged origin/master into master.'
        assert read(local, 'theirs.txt') == 'remote'

    def test_push_after_merging_pull_is_rejected(self, local, upstream, origin):
        """Test the first-parent walk does not see a remote head behind a merge."""
        commit_upstream(upstream, 'theirs.txt', 'remote', 'remote commit')
        commit_file(local, 'mine.txt', 'local', 'local commit')
        remote.pull(local, origin, 'master')

        # the merge commit's first parent chain does not contain the remote head
        with pytest.raises(NonFastForward):
            remote.push(local, origin, 'master')

    def test_failed_pull_keeps_tracking_branch_unsaved(self, local, upstream, origin):
        """Test a pull whose merge is refused stores no tracking branch."""
        commit_upstream(upstream, 'theirs.txt', 'remote', 'remote commit')
        commit_file(local, 'mine.txt', 'local', 'local commit')
        write(local, 'pending.txt', 'pending')
        base.add(local, 'pending.txt')
        local.save()

        with pytest.raises(UncommittedChanges):
            with data.session(local.git_dir) as repo:
                remote.pull(repo, origin, 'master')

        stored = reload(local)
        assert 'origin/master' not in stored.state.branches
        assert stored.state.staged_additions.keys() == {'pending.txt'}
