"""
Command execution on cluster nodes using the local shell or native OpenSSH.
"""
import logging
import socket
import subprocess
from typing import List, Optional, Union

from updatectl.errors import RemoteExecutionError

logger = logging.getLogger("updatectl.ssh")

# Characters of captured output kept in error messages.
ERROR_OUTPUT_TAIL = 1000


def _to_text(data: Union[str, bytes, None]) -> str:
    if data is None:
        return ''
    if isinstance(data, bytes):
        return data.decode('utf-8', errors='replace')
    return data


def _tail(stdout: str, stderr: str, limit: int = ERROR_OUTPUT_TAIL) -> str:
    combined = '\n'.join(part for part in (stdout.strip(), stderr.strip()) if part)
    return combined[-limit:]


class RemoteExecutor:
    """Run shell commands on nodes.

    Commands for the node whose name matches ``local_hostname`` run through
    ``bash -c`` on this host; every other node is reached over ssh. Host key
    checking is disabled, the cluster lives on a trusted private network.
    """

    def __init__(
        self,
        local_hostname: Optional[str] = None,
        username: Optional[str] = None,
        key_path: Optional[str] = None,
        port: int = 22,
        connect_timeout: int = 10,
        default_timeout: int = 120,
    ):
        """Initialize the executor.

        Args:
            local_hostname: Node name that refers to this host (default: hostname)
            username: SSH user (ssh client default when None)
            key_path: Path to SSH private key (optional)
            port: SSH port (default: 22)
            connect_timeout: SSH connection timeout, separate from command timeout
            default_timeout: Command timeout used when none is passed
        """
        self.local_hostname = local_hostname or socket.gethostname()
        self.username = username
        self.key_path = key_path
        self.port = port
        self.connect_timeout = connect_timeout
        self.default_timeout = default_timeout

    @classmethod
    def from_config(cls, config) -> 'RemoteExecutor':
        return cls(
            local_hostname=config.upgrade.local_hostname,
            username=config.ssh.user,
            key_path=config.ssh.key_path,
            port=config.ssh.port,
            connect_timeout=config.ssh.connect_timeout,
            default_timeout=config.ssh.command_timeout,
        )

    def is_local(self, node_name: str) -> bool:
        return node_name == self.local_hostname

    def build_ssh_command(self, host: str, command: str) -> List[str]:
        """Build the ssh argv used to run ``command`` on ``host``."""
        cmd = [
            'ssh',
            '-T',  # Disable pseudo-terminal allocation
            '-o', 'BatchMode=yes',
            '-o', 'StrictHostKeyChecking=no',
            '-o', 'UserKnownHostsFile=/dev/null',
            '-o', 'LogLevel=ERROR',
            '-o', f'ConnectTimeout={self.connect_timeout}',
            '-p', str(self.port),
        ]

        if self.key_path:
            cmd.extend(['-i', self.key_path])

        target = f'{self.username}@{host}' if self.username else host
        cmd.extend([target, command])
        return cmd

    def execute(
        self,
        node_name: str,
        command: str,
        timeout: Optional[float] = None,
        address: Optional[str] = None,
    ) -> str:
        """Run ``command`` on ``node_name`` and return its stdout.

        Args:
            node_name: Cluster node name
            command: Shell command line
            timeout: Overall command timeout in seconds
            address: Address to ssh to (defaults to ``node_name``)

        Raises:
            RemoteExecutionError: On a non-zero exit status or a timeout. The
                message carries the tail of the captured output.
        """
        timeout = timeout or self.default_timeout
        if self.is_local(node_name):
            argv = ['bash', '-c', command]
            where = 'Local exec'
        else:
            host = address or node_name
            argv = self.build_ssh_command(host, command)
            where = f'SSH to {host}'

        command_id = f"{node_name}:[{command[:30]}{'...' if len(command) > 30 else ''}]"
        logger.debug(f"[exec] Starting command {command_id}")

        try:
            result = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            output = _tail(_to_text(e.stdout), _to_text(e.stderr))
            logger.debug(f"[exec] Command {command_id} timed out after {timeout}s")
            raise RemoteExecutionError(
                f"{where} timed out after {timeout} seconds", output=output
            ) from e
        except OSError as e:
            raise RemoteExecutionError(f"{where} failed: {e}") from e

        if result.returncode != 0:
            output = _tail(result.stdout or '', result.stderr or '')
            logger.debug(f"[exec] Command {command_id} exited with {result.returncode}")
            raise RemoteExecutionError(
                f"{where} failed with exit status {result.returncode}",
                exit_code=result.returncode,
                output=output,
            )

        logger.debug(f"[exec] Command {command_id} completed")
        return result.stdout or ''
