#!/usr/bin/python3

import click
from ape.cli import ConnectedProviderCommand, account_option, network_option

from protocol_deployment.commands import prepare_deployment, run_stages
from protocol_deployment.constants import CORE_STAGE
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
    Deploys the Controller behind its proxy, linked against the recorded modules.

    When the Controller is newly deployed it is initialized once and then bootstrapped
    with the pair groups, pairs and roles of the network profile:

    ape run deploy_core --network arbitrum:goerli:infura --account deployer
    """
    pipeline = prepare_deployment(
        account=account,
        definition_filepath=definition,
        profiles_dir=profiles,
        registry_filepath=registry,
        autosign=autosign,
        verify=verify,
    )
    run_stages(pipeline, [CORE_STAGE])


if __name__ == "__main__":
    cli()
