import click

UINT256_MAX = 2**256 - 1


class UInt(click.ParamType):
    """An integer option that must fit the on-chain unsigned type it is passed as."""

    name = "uint"

    def __init__(self, min_value: int = 0, max_value: int = UINT256_MAX):
        self.min_value = min_value
        self.max_value = max_value

    def convert(self, value, param, ctx):
        if isinstance(value, int):
            ivalue = value
        else:
            try:
                ivalue = int(value, 0)
            except ValueError:
                self.fail(f"{value} is not a valid integer", param, ctx)
        if not self.min_value <= ivalue <= self.max_value:
            self.fail(
                f"{value} is outside the allowed range [{self.min_value}, {self.max_value}]",
                param,
                ctx,
            )
        return ivalue
