from pathlib import Path

import click

from protocol_deployment.constants import PROFILES_DIR, PROTOCOL_DEFINITION_FILEPATH
from protocol_deployment.types import UInt

autosign_option = click.option(
    "--autosign",
    help="Sign transactions without asking for confirmation.",
    is_flag=True,
    default=False,
)

verify_option = click.option(
    "--verify/--no-verify",
    help="Publish newly deployed contracts to the block explorer.",
    default=False,
)

definition_option = click.option(
    "--definition",
    help="Protocol definition YAML.",
    type=click.Path(dir_okay=False, exists=True, path_type=Path),
    default=PROTOCOL_DEFINITION_FILEPATH,
    show_default=True,
)

profiles_option = click.option(
    "--profiles",
    help="Directory of network profile YAML files.",
    type=click.Path(file_okay=False, exists=True, path_type=Path),
    default=PROFILES_DIR,
    show_default=True,
)

registry_option = click.option(
    "--registry",
    "-r",
    help="Artifact registry file; defaults to the network's file in the artifacts directory.",
    type=click.Path(dir_okay=False, path_type=Path),
    required=False,
)

pair_id_option = click.option(
    "--pair-id",
    "-p",
    help="ID of the pair",
    required=True,
    type=UInt(min_value=1),
)
