#!/usr/bin/python3

import click
from ape.cli import ConnectedProviderCommand, account_option, network_option

from protocol_deployment.commands import prepare_deployment, run_stages
from protocol_deployment.options import (
    autosign_option,
    definition_option,
    profiles_option,
    registry_option,
    verify_option,
)


@click.command(cls=ConnectedProviderCommand)
@network_option(required=True)
@account_option()
@autosign_option
@verify_option
@definition_option
@profiles_option
@registry_option
def cli(network, account, autosign, verify, definition, profiles, registry):
    """
    Runs every stage of the protocol definition in order: modules, core, reader, strategy.
    Stages whose artifacts are already recorded are reused, so a failed run is
    resumed by running it again.
    """
    pipeline = prepare_deployment(
        account=account,
        definition_filepath=definition,
        profiles_dir=profiles,
        registry_filepath=registry,
        autosign=autosign,
        verify=verify,
    )
    run_stages(pipeline, pipeline.definition.stage_names)


if __name__ == "__main__":
    cli()
