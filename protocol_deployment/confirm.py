from collections import OrderedDict
from typing import Dict, Optional

from ape.utils import ZERO_ADDRESS


def _ask(question: str) -> None:
    """Exits the run if the user answers 'n'."""
    answer = input(f"{question} Y/N? ")
    if answer.lower().strip() == "n":
        print("Aborting deployment!")
        exit(-1)


def _continue() -> None:
    _ask("Continue")


def _print_section(title: str, values: Dict) -> None:
    print(f"\n{title}")
    for name, value in values.items():
        print(f"\t{name}={value}")


def _confirm_resolution(
    resolved_params: OrderedDict,
    contract_name: str,
    libraries: Optional[Dict[str, str]] = None,
) -> None:
    """Shows what a single contract is about to be deployed with, and asks to go ahead."""
    if libraries:
        _print_section(f"Linked libraries for {contract_name}", libraries)

    if resolved_params:
        _print_section(f"Constructor parameters for {contract_name}", resolved_params)
    else:
        print(f"\n(i) No constructor parameters for {contract_name}")
    _ask(f"Deploy {contract_name}")

    if ZERO_ADDRESS in resolved_params.values():
        _ask("Zero Address detected for deployment parameter; Continue?")
