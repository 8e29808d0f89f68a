import json
import logging
import subprocess
from typing import Any, Optional

from mtasts_harvester.errors import PowerShellError

logger = logging.getLogger(__name__)


def quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string literal"""
    return "'" + value.replace("'", "''") + "'"


def run_powershell(
    command: str,
    shell: str = "powershell",
    timeout: Optional[int] = None,
    preamble: str = "",
) -> str:
    """
    Run a PowerShell command and return its standard output

    Args:
        command: PowerShell script text
        shell: 'powershell' or 'pwsh'
        timeout: Seconds before the command is abandoned
        preamble: Script run before the command, e.g. loading the Exchange snap-in

    Raises:
        PowerShellError: on a non-zero exit code or timeout
    """
    script = f"{preamble}; {command}" if preamble else command
    logger.debug(f"Executing {shell} command: {command[:100]}{'...' if len(command) > 100 else ''}")

    try:
        result = subprocess.run(
            [shell, "-NoProfile", "-NonInteractive", "-Command", script],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise PowerShellError(f"{shell} command timed out after {timeout} seconds")
    except FileNotFoundError:
        raise PowerShellError(f"{shell} executable not found")

    stdout = result.stdout.strip()
    stderr = result.stderr.strip()

    if result.returncode != 0:
        raise PowerShellError(
            f"{shell} execution failed (returncode={result.returncode}): {stderr or stdout}",
            returncode=result.returncode,
        )

    if stderr:
        logger.warning(f"{shell} command wrote to stderr: {stderr}")

    return stdout


def run_powershell_json(command: str, **kwargs) -> Any:
    """Run a command whose output is piped through ConvertTo-Json"""
    output = run_powershell(command, **kwargs)
    if not output:
        return None
    try:
        return json.loads(output)
    except json.JSONDecodeError as e:
        raise PowerShellError(f"Unexpected non-JSON output from PowerShell: {e}")
