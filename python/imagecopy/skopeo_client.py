"""
Skopeo client for image transfer.

This module wraps the skopeo binary for the two operations the relocation
engine needs: copying an image between two transport references, and reading
the raw manifest of the copied image so its digest can be recomputed.
"""

import json
import os
import subprocess
import tempfile
from contextlib import contextmanager
from typing import Iterator, List, Optional

from imagecopy.error_utils import create_copy_error
from imagecopy.logging_utils import get_logger

logger = get_logger(__name__)

# Signatures are never verified. Images only move between registries the
# engine itself controls.
ACCEPT_ANYTHING_POLICY = {"default": [{"type": "insecureAcceptAnything"}]}


@contextmanager
def trust_policy(directory: Optional[str] = None) -> Iterator[str]:
    """Write an accept-anything trust policy and yield its path.

    The file is removed on every exit path.
    """
    if directory:
        os.makedirs(directory, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix="policy-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(ACCEPT_ANYTHING_POLICY, f)
        yield path
    finally:
        try:
            os.unlink(path)
        except OSError as rm_err:
            logger.warning(f"Could not remove trust policy {path}: {rm_err}")


class SkopeoClient:
    """Thin skopeo wrapper for copy and raw manifest inspection."""

    def __init__(self, config_manager=None, binary: Optional[str] = None, timeout: Optional[int] = None):
        """Initialize SkopeoClient.

        Args:
            config_manager: ConfigManager supplying skopeo binary and timeout defaults
            binary: Override for the skopeo executable
            timeout: Override for the per-invocation timeout in seconds
        """
        self.binary = binary or (config_manager.get_skopeo_binary() if config_manager else "skopeo")
        self.timeout = timeout or (config_manager.get_copy_timeout() if config_manager else 600)

    @staticmethod
    def _redact_command_for_logging(cmd: List[str]) -> List[str]:
        """Return a copy of the command with any credentials redacted."""
        redacted = list(cmd)

        creds_flags = ("--creds", "--src-creds", "--dest-creds")
        token_flags = ("--password", "--src-registry-token", "--dest-registry-token", "--registry-token")

        for i, token in enumerate(redacted):
            if token in creds_flags and i + 1 < len(redacted):
                value = redacted[i + 1]
                if isinstance(value, str) and ":" in value:
                    user, _ = value.split(":", 1)
                    redacted[i + 1] = f"{user}:****"
            if token in token_flags and i + 1 < len(redacted):
                redacted[i + 1] = "****"

        return redacted

    def _run(self, cmd: List[str], source: str, destination: str, timeout: Optional[float], text: bool):
        log_cmd = " ".join(self._redact_command_for_logging(cmd))
        logger.debug(f"Running: {log_cmd}")
        effective_timeout = self.timeout if timeout is None else min(timeout, self.timeout)
        try:
            return subprocess.run(cmd, capture_output=True, text=text, check=True, timeout=effective_timeout)
        except subprocess.TimeoutExpired as e:
            logger.error(f"Skopeo command timed out after {effective_timeout}s: {log_cmd}")
            raise create_copy_error(source, destination, e) from e
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode("utf-8", "replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
            logger.error(f"Skopeo command failed: {log_cmd}")
            logger.error(f"Error: {stderr}")
            raise create_copy_error(source, destination, e, stderr) from e
        except OSError as e:
            logger.error(f"Could not run skopeo: {e}")
            raise create_copy_error(source, destination, e) from e

    def copy_image(
        self,
        src_ref: str,
        dest_ref: str,
        policy_path: str,
        src_args: Optional[List[str]] = None,
        dest_args: Optional[List[str]] = None,
        preserve_digests: bool = False,
        timeout: Optional[float] = None,
    ) -> str:
        """Copy an image and return the digest of the manifest written to the destination.

        Args:
            src_ref: Full source image reference (e.g. "docker://registry:5000/ns/repo@sha256:...")
            dest_ref: Full destination image reference (e.g. "docker://migration/ns/repo:tag")
            policy_path: Trust policy file passed with --policy
            src_args: Source TLS/credential flags
            dest_args: Destination TLS/credential flags
            preserve_digests: Refuse any manifest conversion that would change the digest
            timeout: Upper bound in seconds for this invocation

        Raises:
            CopyError: skopeo failed, timed out or could not be started
        """
        fd, digest_file = tempfile.mkstemp(prefix="digest-")
        os.close(fd)
        try:
            cmd = [self.binary, "--policy", policy_path, "copy", "--digestfile", digest_file]
            cmd.extend(src_args or [])
            cmd.extend(dest_args or [])
            if preserve_digests:
                cmd.append("--preserve-digests")
            cmd.extend([src_ref, dest_ref])

            self._run(cmd, src_ref, dest_ref, timeout, text=True)

            with open(digest_file, "r") as f:
                return f.read().strip()
        finally:
            try:
                os.unlink(digest_file)
            except OSError:
                pass

    def inspect_raw(self, ref: str, args: Optional[List[str]] = None, timeout: Optional[float] = None) -> bytes:
        """Return the exact manifest bytes stored for ref.

        Raises:
            CopyError: skopeo failed, timed out or could not be started
        """
        cmd = [self.binary, "inspect", "--raw"]
        cmd.extend(args or [])
        cmd.append(ref)
        result = self._run(cmd, ref, ref, timeout, text=False)
        return result.stdout
