import os
import re
import subprocess
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SCRIPTS = sorted((ROOT / "examples").glob("[0-9][0-9]_*.py"))

# Plotting and table libraries the scripts may import at top level.
EXAMPLE_EXTRAS = ("matplotlib", "pandas")

_IMPORT = re.compile(r"^\s*(?:import|from)\s+([A-Za-z_]\w*)", re.MULTILINE)


def _imported_extras(script: Path):
    found = set(_IMPORT.findall(script.read_text(encoding="utf-8")))
    return [name for name in EXAMPLE_EXTRAS if name in found]


@pytest.mark.examples
@pytest.mark.parametrize("script", SCRIPTS, ids=lambda p: p.stem)
def test_example_script(script: Path) -> None:
    for name in _imported_extras(script):
        pytest.importorskip(name)

    env = dict(os.environ, MPLBACKEND="Agg")
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT / "src"), env.get("PYTHONPATH")]))

    proc = subprocess.run(
        [sys.executable, str(script)], cwd=ROOT, env=env, capture_output=True, text=True
    )
    assert proc.returncode == 0, f"{script.name} exited with {proc.returncode}\n{proc.stdout}\n{proc.stderr}"
