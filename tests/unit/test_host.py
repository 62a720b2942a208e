"""
Unit tests for the directory host (keepsake/backup/host.py).
"""

import io
import zipfile

import pytest

from keepsake.backup.host import ArtifactError, DirectoryHost


class TestDirectoryHostCreate:
    """Test packing files into an artifact."""

    def test_create_artifact_directory(self, host):
        data = host.create_artifact()

        with zipfile.ZipFile(io.BytesIO(data)) as zipf:
            names = zipf.namelist()
            assert 'data/config.json' in names
            assert 'data/nested/state.txt' in names
            assert zipf.read('data/nested/state.txt') == b'armed'

    def test_create_artifact_single_file(self, source_dir):
        host = DirectoryHost([str(source_dir / 'config.json')])

        data = host.create_artifact()

        with zipfile.ZipFile(io.BytesIO(data)) as zipf:
            assert zipf.namelist() == ['config.json']

    def test_create_artifact_no_paths(self):
        with pytest.raises(ArtifactError, match='No source paths'):
            DirectoryHost([]).create_artifact()

    def test_create_artifact_missing_path(self, tmp_path):
        host = DirectoryHost([str(tmp_path / 'missing')])

        with pytest.raises(ArtifactError, match='does not exist'):
            host.create_artifact()


class TestDirectoryHostRestore:
    """Test extracting an artifact."""

    def test_restore_round_trip(self, host, tmp_path):
        data = host.create_artifact()

        host.restore_artifact(data)

        restored = tmp_path / 'restored' / 'data'
        assert (restored / 'config.json').read_text() == '{"devices": 3}'
        assert (restored / 'nested' / 'state.txt').read_text() == 'armed'

    def test_restore_requires_directory(self, source_dir):
        host = DirectoryHost([str(source_dir)])

        with pytest.raises(ArtifactError, match='No restore directory'):
            host.restore_artifact(host.create_artifact())

    def test_restore_invalid_archive(self, host):
        with pytest.raises(ArtifactError, match='Invalid backup archive'):
            host.restore_artifact(b'not a zip file')

    def test_restore_rejects_unsafe_members(self, host, tmp_path):
        """Members escaping the restore directory abort the restore."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w') as zipf:
            zipf.writestr('../escape.txt', 'x')

        with pytest.raises(ArtifactError, match='Unsafe path'):
            host.restore_artifact(buffer.getvalue())

        assert not (tmp_path / 'escape.txt').exists()
        assert not (tmp_path / 'restored').exists()
