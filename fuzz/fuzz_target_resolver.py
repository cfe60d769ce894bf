import sys

import atheris

with atheris.instrument_imports():
    from homepilot.console.catalog import Device, DeviceGroup, Room, TargetCatalog
    from homepilot.console.resolver import TargetResolver


CATALOG = TargetCatalog(
    [
        Device("L1", "Kitchen Ceiling", "light", state="off", online=True),
        Device("L2", "Kitchen Counter", "light", state="on", online=True),
        Device("L3", "Porch Light", "light", online=False),
        Device("F1", "Bedroom Fan", "fan", state="off", online=True),
        Device("S1", "Living Room Temperature", "sensor", state=21.5, online=True),
        Device("W1", "Coffee Maker", "switch", state="off", online=True),
    ],
    [
        Room("kitchen", "Kitchen", frozenset({"L1", "L2"})),
        Room("bedroom", "Bedroom", frozenset({"F1"})),
        Room("living", "Living Room", frozenset({"S1"})),
    ],
    [DeviceGroup("downstairs", "Downstairs", frozenset({"L1", "L3", "W1"}))],
)
RESOLVER = TargetResolver(CATALOG)


def TestOneInput(data: bytes) -> None:
    """Fuzz reference resolution; action targets must be online and controllable."""
    fdp = atheris.FuzzedDataProvider(data)
    for_action = fdp.ConsumeBool()
    reference = fdp.ConsumeUnicodeNoSurrogates(128)

    resolution = RESOLVER.resolve(reference, for_action=for_action)

    if not resolution.ok and not resolution.explanation:
        raise AssertionError(f"Failed resolution without an explanation for {reference!r}")
    if for_action:
        for device in resolution.devices:
            if not device.online or not device.controllable:
                raise AssertionError(f"{device.id} is not actionable but resolved for {reference!r}")


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
