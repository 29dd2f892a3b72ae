from __future__ import annotations

import pytest

from serverpilot_ai.remote.prompt_detector import detect_prompt, detect_prompt_deep


@pytest.mark.parametrize(
    "output, label",
    [
        ("After this operation, 3 MB will be used.\nDo you want to continue? [Y/n] ", "yes/no choice"),
        ("Are you sure you want to continue connecting (yes/no/[fingerprint])? ", "ssh host key"),
        ("[sudo] password for deploy: ", "sudo password"),
        ("Enter passphrase for key '/root/.ssh/id_ed25519': ", "passphrase"),
        ("Is this ok [y/d/N]: ", "yum confirmation"),
        ("/root/.ssh/id_rsa already exists.\nOverwrite? ", "overwrite prompt"),
        ("Username for 'https://github.com': ", "git credentials"),
    ],
)
def test_detects_common_prompts(output, label):
    detection = detect_prompt(output)
    assert detection is not None
    assert detection.pattern == label
    assert detection.prompt_text == output.splitlines()[-1].strip()


@pytest.mark.parametrize(
    "output",
    [
        "Get:4 https://packages.adoptium.net/artifactory/deb jammy InRelease [7,507 B]",
        "Reading package lists... Done\nBuilding dependency tree... Done",
        "Filesystem      Size  Used Avail Use% Mounted on\n/dev/sda1        50G   21G   27G  44% /",
    ],
)
def test_ordinary_output_is_not_a_prompt(output):
    assert detect_prompt(output) is None


def test_chunk_scan_only_looks_at_the_tail():
    output = "Proceed? [Y/n] \n" + "x" * 600
    assert detect_prompt(output) is None
    assert detect_prompt_deep(output) is not None
