#!/usr/bin/python3

import click
from ape.cli import ConnectedProviderCommand, account_option, network_option

from protocol_deployment.commands import abort_on_failure, prepare_deployment
from protocol_deployment.constants import CORE_CONTRACT_NAME
from protocol_deployment.networks import AssetRiskParams
from protocol_deployment.options import (
    autosign_option,
    definition_option,
    pair_id_option,
    profiles_option,
    registry_option,
)
from protocol_deployment.types import UInt


@click.command(cls=ConnectedProviderCommand)
@network_option(required=True)
@account_option()
@autosign_option
@definition_option
@profiles_option
@registry_option
@pair_id_option
@click.option(
    "--preset",
    help="Risk preset of the network profile",
    type=str,
    required=False,
)
@click.option("--risk-ratio", help="Risk ratio", type=UInt(min_value=1), required=False)
@click.option("--range-size", help="Range size", type=UInt(), required=False)
@click.option(
    "--rebalance-threshold", help="Rebalance threshold", type=UInt(), required=False
)
def cli(
    network,
    account,
    autosign,
    definition,
    profiles,
    registry,
    pair_id,
    preset,
    risk_ratio,
    range_size,
    rebalance_threshold,
):
    """
    Updates the asset risk parameters of one pair on the live Controller:

    ape run update_asset_risk_params --network arbitrum:goerli:infura -p 2 --preset wide
    """
    explicit = (risk_ratio, range_size, rebalance_threshold)
    if preset and any(value is not None for value in explicit):
        raise click.BadOptionUsage("preset", "Use either --preset or explicit values, not both.")
    if not preset and any(value is None for value in explicit):
        raise click.BadOptionUsage(
            "preset", "Without --preset, --risk-ratio, --range-size and "
            "--rebalance-threshold are all required."
        )

    pipeline = prepare_deployment(
        account=account,
        definition_filepath=definition,
        profiles_dir=profiles,
        registry_filepath=registry,
        autosign=autosign,
    )

    if preset:
        if pipeline.profile is None:
            raise click.ClickException(f"No network profile for '{pipeline.network_id}'.")
        try:
            risk = pipeline.profile.risk_presets[preset]
        except KeyError:
            raise click.BadParameter(
                f"Unknown preset '{preset}'; "
                f"expected one of {sorted(pipeline.profile.risk_presets)}",
                param_hint="--preset",
            )
    else:
        risk = AssetRiskParams(
            risk_ratio=risk_ratio, range_size=range_size, rebalance_threshold=rebalance_threshold
        )

    print(f"Updating pair {pair_id} on {CORE_CONTRACT_NAME} with {risk}")
    with abort_on_failure():
        receipt = pipeline.update_asset_risk_params(pair_id=pair_id, risk=risk)
    print(f"(i) Updated in transaction {receipt.tx_hash}")


if __name__ == "__main__":
    cli()
