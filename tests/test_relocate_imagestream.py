"""Unit tests for scripts/relocate_imagestream.py"""

import json
import os
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))


@pytest.fixture(autouse=True)
def patch_environment():
    """Patch environment for all tests"""
    with patch.dict(os.environ, {"SKIP_CONFIG_VALIDATION": "true"}):
        yield


RESOURCE = {
    "kind": "ImageStream",
    "metadata": {"name": "app", "namespace": "ns"},
    "status": {"tags": []},
}


@pytest.fixture
def input_file(tmp_path):
    path = tmp_path / "is.yaml"
    path.write_text(yaml.safe_dump(RESOURCE))
    return str(path)


class TestParseNamespaceMapping:
    """Tests for parse_namespace_mapping"""

    def test_parses_pairs(self):
        """Test repeated old:new values build a mapping"""
        from scripts.relocate_imagestream import parse_namespace_mapping

        assert parse_namespace_mapping(["a:b", "c:d"]) == {"a": "b", "c": "d"}
        assert parse_namespace_mapping(None) == {}

    @pytest.mark.parametrize("value", ["nocolon", ":b", "a:"])
    def test_rejects_malformed(self, value):
        """Test malformed mappings raise ConfigurationError"""
        from imagecopy.error_utils import ConfigurationError
        from scripts.relocate_imagestream import parse_namespace_mapping

        with pytest.raises(ConfigurationError):
            parse_namespace_mapping([value])


class TestMain:
    """Tests for the command line entry point"""

    def test_backup_writes_result(self, input_file, tmp_path):
        """Test backup runs the orchestrator and writes its result"""
        from scripts import relocate_imagestream

        output = tmp_path / "out.json"
        updated = dict(RESOURCE, metadata={"name": "app", "namespace": "ns", "labels": {"x": "y"}})

        with patch.object(relocate_imagestream, "load_config_manager", return_value=MagicMock(get_log_level=lambda: "INFO")), \
                patch.object(relocate_imagestream, "BackupOrchestrator") as mock_orchestrator:
            mock_orchestrator.return_value.execute.return_value = updated
            relocate_imagestream.main(["--format", "json", "backup", "--input", input_file, "--output", str(output)])

        mock_orchestrator.return_value.execute.assert_called_once_with(RESOURCE)
        assert json.loads(output.read_text()) == updated

    def test_restore_passes_mapping_and_backup(self, input_file, tmp_path, capsys):
        """Test restore forwards the backup copy and namespace mapping and prints to stdout"""
        from imagecopy.orchestrators import RestoreResult
        from scripts import relocate_imagestream

        with patch.object(relocate_imagestream, "load_config_manager", return_value=MagicMock(get_log_level=lambda: "INFO")), \
                patch.object(relocate_imagestream, "RestoreOrchestrator") as mock_orchestrator:
            mock_orchestrator.return_value.execute.return_value = RestoreResult(item=RESOURCE)
            relocate_imagestream.main(
                ["restore", "--input", input_file, "--from-backup", input_file, "--namespace-mapping", "ns:new-ns"]
            )

        mock_orchestrator.return_value.execute.assert_called_once_with(
            RESOURCE, resource_from_backup=RESOURCE, namespace_mapping={"ns": "new-ns"}
        )
        assert yaml.safe_load(capsys.readouterr().out) == RESOURCE

    def test_actionable_error_exits_one(self, input_file):
        """Test an ActionableError exits with status 1"""
        from imagecopy.error_utils import create_missing_token_error
        from scripts import relocate_imagestream

        with patch.object(relocate_imagestream, "load_config_manager", return_value=MagicMock(get_log_level=lambda: "INFO")), \
                patch.object(relocate_imagestream, "BackupOrchestrator") as mock_orchestrator:
            mock_orchestrator.return_value.execute.side_effect = create_missing_token_error()
            with pytest.raises(SystemExit) as exc_info:
                relocate_imagestream.main(["backup", "--input", input_file])

        assert exc_info.value.code == 1

    def test_non_mapping_input_exits_one(self, tmp_path):
        """Test an input file that is not an object is rejected"""
        from scripts import relocate_imagestream

        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with patch.object(relocate_imagestream, "load_config_manager", return_value=MagicMock(get_log_level=lambda: "INFO")):
            with pytest.raises(SystemExit) as exc_info:
                relocate_imagestream.main(["backup", "--input", str(path)])
        assert exc_info.value.code == 1
