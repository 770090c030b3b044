#!/usr/bin/env python3
# /*
# Copyright 2026 The Kong Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""
cli.py - Integration test environment for the Kong ingress controller.

Subcommands:
    run        Bootstrap the environment, run pytest, tear down
    cluster    Create or delete a reusable kind cluster

Examples:
    # Fresh kind cluster, run the integration tests
    ./cli.py run -- tests/integration -x

    # Reuse an existing cluster
    KONG_TEST_CLUSTER=kind:test-cluster ./cli.py run

    # Pin the Kubernetes version of the new cluster
    ./cli.py run --cluster-version 1.30.0

    # Keep a cluster around between runs
    ./cli.py cluster create --name test-cluster
    ./cli.py cluster delete --name test-cluster

For detailed usage information, run: ./cli.py --help
"""

from __future__ import annotations

import logging
import sys

import typer

from testenv_manager import console
from testenv_manager.commands import cluster_cmd, run_cmd

app = typer.Typer(
    help="Integration test environment for the Kong ingress controller.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.command(
    "run",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)(run_cmd.run_tests)
app.add_typer(cluster_cmd.app, name="cluster")


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
