import typing
from contextlib import contextmanager
from pathlib import Path

import click
from ape.api import AccountAPI
from ape.logging import logger

from protocol_deployment.ape_environment import ApeEnvironment
from protocol_deployment.exceptions import OrchestrationError
from protocol_deployment.networks import NetworkProfileTable
from protocol_deployment.params import ProtocolDefinition
from protocol_deployment.pipeline import Pipeline, StageReport
from protocol_deployment.registry import ArtifactRegistry
from protocol_deployment.utils import registry_filepath_from_network


def prepare_deployment(
    account: AccountAPI,
    definition_filepath: Path,
    profiles_dir: Path,
    registry_filepath: typing.Optional[Path] = None,
    autosign: bool = False,
    verify: bool = False,
) -> Pipeline:
    """
    Prepares the deployment by loading the protocol definition and network profiles
    and checking the pre-deployment conditions.
    """
    # load (and implicitly validate) before any account interaction,
    # so that the user can see validation errors first.
    definition = ProtocolDefinition.from_yaml(definition_filepath)
    profiles = NetworkProfileTable.from_directory(profiles_dir)

    environment = ApeEnvironment(account=account, autosign=autosign, verify=verify)
    registry_filepath = registry_filepath or registry_filepath_from_network(
        environment.network_id
    )
    print(f"Definition: {definition_filepath}", f"Registry: {registry_filepath}", sep="\n")
    registry = ArtifactRegistry(environment, filepath=registry_filepath)
    return Pipeline(definition=definition, registry=registry, profiles=profiles)


@contextmanager
def abort_on_failure():
    """Turns an orchestration failure into a non-zero exit of the command."""
    try:
        yield
    except OrchestrationError as e:
        logger.error(str(e))
        raise click.ClickException(f"{type(e).__name__}: {e}")


def run_stages(pipeline: Pipeline, stage_names: typing.List[str]) -> typing.List[StageReport]:
    reports = list()
    with abort_on_failure():
        for stage_name in stage_names:
            reports.append(pipeline.run_stage(stage_name))
    for report in reports:
        for name, result in report.bootstraps.items():
            print(f"(i) Bootstrap of {name}: {result.state.value} ({len(result.calls)} call(s))")
    print(f"(i) Registry written to {pipeline.registry.filepath}!")
    return reports
