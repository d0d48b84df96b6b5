"""
Julia client infrastructure for orgmaint.

Every interaction with Julia (Pkg operations, package registration,
formatting, profiling scripts) runs in a child `julia` process through
this client. Outputs are returned, never raised, so callers decide how
to treat a failing Julia run.
"""

import os
import signal
import subprocess
import logging
from pathlib import Path
from typing import Optional, Dict, List, Sequence, Tuple

logger = logging.getLogger(__name__)


def julia_string(value: str) -> str:
    """Quote a Python string as a Julia string literal."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$")
    return f'"{escaped}"'


class JuliaClient:
    """
    Runs Julia code in child processes.

    Example:
        julia = JuliaClient()
        output, code = julia.run_code("using Pkg; Pkg.status()", project="/path/to/pkg")
    """

    def __init__(
        self,
        executable: str = "julia",
        channel: Optional[str] = None,
        default_timeout: Optional[int] = None
    ):
        """
        Initialize JuliaClient.

        Args:
            executable: Julia binary to invoke
            channel: juliaup channel (e.g. "1.10"); passed as `+channel`
            default_timeout: Timeout in seconds when a call gives none
        """
        self.executable = executable
        self.channel = channel
        self.default_timeout = default_timeout

    def _base_cmd(self, project: Optional[str], flags: Sequence[str]) -> List[str]:
        cmd = [self.executable]
        if self.channel:
            cmd.append(f"+{self.channel}")
        cmd.extend(flags)
        if project is not None:
            cmd.append(f"--project={project}")
        return cmd

    def _run(
        self,
        cmd: List[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
        log_file: Optional[str] = None
    ) -> Tuple[str, int]:
        """
        Run a julia command.

        stdout and stderr are merged. When log_file is given the output is
        streamed into it as well as returned. Julia runs in its own process
        group, and on timeout the whole group is killed so precompile and
        test workers do not outlive the run.

        Returns:
            Tuple of (output, returncode); returncode is -1 on timeout or
            when julia could not be started
        """
        timeout = timeout if timeout is not None else self.default_timeout
        run_env = dict(os.environ)
        if env:
            run_env.update(env)

        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            if log_file:
                Path(log_file).parent.mkdir(parents=True, exist_ok=True)
                with open(log_file, "w") as log:
                    proc = subprocess.Popen(
                        cmd, cwd=cwd, env=run_env,
                        stdout=log, stderr=subprocess.STDOUT, text=True,
                        start_new_session=True,
                    )
                    try:
                        code = proc.wait(timeout=timeout)
                    except subprocess.TimeoutExpired:
                        logger.warning(f"Julia command timed out after {timeout}s: {' '.join(cmd)}")
                        self._kill(proc)
                        log.write(f"\nTimed out after {timeout} seconds\n")
                        code = -1
                return Path(log_file).read_text(errors="replace"), code

            proc = subprocess.Popen(
                cmd, cwd=cwd, env=run_env,
                stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            logger.error(f"Julia executable not found: {e}")
            return str(e), -1

        try:
            output, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Julia command timed out after {timeout}s: {' '.join(cmd)}")
            self._kill(proc)
            output, _ = proc.communicate()
            return output or "", -1
        return output or "", proc.returncode

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            proc.kill()
        proc.wait()

    def run_code(
        self,
        code: str,
        project: Optional[str] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
        flags: Sequence[str] = (),
        log_file: Optional[str] = None
    ) -> Tuple[str, int]:
        """Run a snippet with `julia -e`."""
        cmd = self._base_cmd(project, flags) + ["-e", code]
        return self._run(cmd, cwd=cwd, env=env, timeout=timeout, log_file=log_file)

    def run_script(
        self,
        script: str,
        project: Optional[str] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
        flags: Sequence[str] = (),
        args: Sequence[str] = ()
    ) -> Tuple[str, int]:
        """Run a script file, passing args through to ARGS."""
        cmd = self._base_cmd(project, flags) + [str(script), *args]
        return self._run(cmd, cwd=cwd, env=env, timeout=timeout)

    # ------------------------------------------------------------------
    # Pkg helpers
    # ------------------------------------------------------------------

    def instantiate(self, project: str) -> bool:
        output, code = self.run_code("using Pkg; Pkg.instantiate()", project=project)
        if code != 0:
            logger.warning(f"Pkg.instantiate failed for {project}: {output[-500:]}")
        return code == 0

    def update(self, project: str) -> bool:
        output, code = self.run_code("using Pkg; Pkg.update()", project=project)
        if code != 0:
            logger.warning(f"Pkg.update failed for {project}: {output[-500:]}")
        return code == 0

    def resolve(self, project: str) -> Tuple[str, int]:
        return self.run_code("using Pkg; Pkg.resolve()", project=project)

    def test(
        self,
        project: str,
        timeout_minutes: int = 30,
        env: Optional[Dict[str, str]] = None,
        log_file: Optional[str] = None
    ) -> Tuple[str, int]:
        """Instantiate then run `Pkg.test()`, killed after timeout_minutes."""
        return self.run_code(
            "using Pkg; Pkg.instantiate(); Pkg.test()",
            project=project,
            env=env,
            timeout=timeout_minutes * 60,
            log_file=log_file,
        )

    def load_package(self, project: str, package_name: str) -> Tuple[bool, str]:
        """Check that `using <package>` succeeds in the project."""
        output, code = self.run_code(
            f"using Pkg; Pkg.instantiate(); using {package_name}",
            project=project,
            cwd=project,
        )
        return code == 0, output

    def register(self, package_dir: str, registry: str = "General", push: bool = False) -> Tuple[bool, str]:
        """Register a package with LocalRegistry."""
        code = (
            f"using LocalRegistry; register({julia_string(package_dir)}; "
            f"registry={julia_string(registry)}, push={'true' if push else 'false'})"
        )
        output, rc = self.run_code(code, cwd=package_dir)
        return rc == 0, output

    def format(self, path: str) -> Tuple[bool, str]:
        """Run JuliaFormatter over a directory tree."""
        output, code = self.run_code('using JuliaFormatter; format(".")', cwd=path)
        return code == 0, output

    def time_imports(self, project: str, package_name: str, timeout: Optional[int] = None) -> Tuple[str, int]:
        """Load a package under `--time-imports`."""
        code = (
            'using Pkg; Pkg.activate("."); Pkg.instantiate(); '
            f"using {package_name}"
        )
        return self.run_code(
            code,
            project=project,
            cwd=project,
            timeout=timeout,
            flags=("--startup-file=no", "--time-imports"),
        )
