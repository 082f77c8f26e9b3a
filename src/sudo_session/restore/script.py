#!/usr/bin/env python3
"""
Restore script rendering.

When the current process is not elevated, the undo has to run somewhere
else: inside an existing sudo session or in a freshly elevated
powershell.exe. Both take script text, so the change-log is rendered into
a self-contained PowerShell script that reports what it undid as JSON.
"""

import json
from typing import List, Optional

from ..changelog.manager import ChangeLog
from ..errors import RestoreError
from ..system.powershell import encode_command, quote
from ..system.wsman import disable_credssp_if_enabled_snippet, disable_remoting_snippet
from .engine import RestoreResult


WINRM_DEFER_SECONDS = 5
DEFERRED_WINRM_LABEL = 'winrm (deferred)'


def _registry_path(key: str) -> str:
    return quote(f"Registry::{key}")


def _step_snippet(step, defer_winrm: bool) -> str:
    kind = step['kind']

    if kind == 'wsman_server_credssp':
        return disable_credssp_if_enabled_snippet('server')

    if kind == 'wsman_client_credssp':
        return disable_credssp_if_enabled_snippet('client')

    if kind == 'registry_key':
        path = _registry_path(step['key'])
        return (f"if (Test-Path -LiteralPath {path}) "
                f"{{ Remove-Item -LiteralPath {path} -Recurse -Force }}")

    if kind == 'registry_property':
        path = _registry_path(step['key'])
        name = quote(step['name'])
        previous = step.get('previous')
        if previous is not None:
            property_type = 'DWord' if isinstance(previous, int) else 'String'
            return (f"if (Test-Path -LiteralPath {path}) "
                    f"{{ New-ItemProperty -LiteralPath {path} -Name {name} "
                    f"-PropertyType {property_type} -Value {quote(previous)} -Force | Out-Null }}")
        return (f"if ($null -ne (Get-ItemProperty -LiteralPath {path} -Name {name} "
                f"-ErrorAction SilentlyContinue)) "
                f"{{ Remove-ItemProperty -LiteralPath {path} -Name {name} -Force }}")

    if kind == 'winrm':
        snippet = disable_remoting_snippet(step.get('startup'))
        if not defer_winrm:
            return snippet
        return detached_process_snippet(f"Start-Sleep -Seconds {WINRM_DEFER_SECONDS}; {snippet}")

    raise ValueError(f"Unknown restore step: {kind}")


def detached_process_snippet(script: str) -> str:
    """Start ``script`` in a powershell.exe that survives the calling shell.

    Children of a remote shell share the WSMan provider host's job and are
    killed when the shell closes. Win32_Process.Create spawns the process
    from the WMI service instead.
    """
    command_line = ("powershell.exe -NoProfile -NonInteractive -WindowStyle Hidden "
                    f"-EncodedCommand {encode_command(script)}")
    return (
        "$spawn = Invoke-CimMethod -ClassName Win32_Process -MethodName Create "
        f"-Arguments @{{ CommandLine = {quote(command_line)} }}; "
        "if ($spawn.ReturnValue -ne 0) "
        "{ throw \"Win32_Process.Create failed with code $($spawn.ReturnValue)\" }"
    )


def render_restore_script(changelog: ChangeLog, result_path: Optional[str] = None,
                          defer_winrm: bool = False) -> str:
    """Render the PowerShell text that undoes ``changelog``.

    The report is written to ``result_path`` when given, otherwise it is the
    script's only pipeline output.
    """
    lines: List[str] = [
        f"# SudoSession restore for {changelog.changelog_id}",
        "$ErrorActionPreference = 'Stop'",
        "$undone = New-Object System.Collections.Generic.List[string]",
        "$failure = $null",
        "$step = $null",
        "try {",
    ]

    for step in changelog.pending_steps():
        label = step['label']
        if step['kind'] == 'winrm' and defer_winrm:
            label = DEFERRED_WINRM_LABEL
        lines.append(f"    $step = {quote(label)}")
        lines.append(f"    {_step_snippet(step, defer_winrm)}")
        lines.append("    $undone.Add($step)")

    lines.extend([
        "} catch {",
        "    $failure = \"${step}: $($_.Exception.Message)\"",
        "}",
        "$report = ConvertTo-Json -Compress -InputObject @{ "
        "undone = [string[]]$undone.ToArray(); error = $failure }",
    ])

    if result_path:
        lines.append(f"Set-Content -LiteralPath {quote(result_path)} -Value $report -Encoding UTF8")
    else:
        lines.append("Write-Output $report")

    return "\n".join(lines) + "\n"


def parse_restore_report(text: str, changelog_id: str, method: str) -> RestoreResult:
    """Parse the JSON report emitted by a rendered restore script."""
    report = None
    for line in reversed((text or '').strip().splitlines()):
        line = line.strip().lstrip('\ufeff')
        if not line.startswith('{'):
            continue
        try:
            report = json.loads(line)
            break
        except ValueError:
            continue

    if not isinstance(report, dict):
        raise RestoreError(f"No restore report found in output for {changelog_id}")

    undone = report.get('undone') or []
    if isinstance(undone, str):
        undone = [undone]

    return RestoreResult(changelog_id, method, undone=list(undone), error=report.get('error'))
