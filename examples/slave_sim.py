#!/usr/bin/env python3
"""Example: run a simulated slave on port 5020, seed a few values and print the table every 2 s."""

import asyncio

from modbus_testtool import SlaveConfig
from modbus_testtool.server import SlaveSession
from modbus_testtool.types import DataType


async def run() -> None:
    slave = SlaveSession(SlaveConfig(port=5020, unit_id=1))
    slave.log.add_listener(lambda entry: print(entry.format()))
    await slave.start()
    try:
        slave.write(0, DataType.UINT16, "1000")
        slave.write(10, DataType.FLOAT32, "3.14")
        slave.write(5, DataType.BOOL, "true")

        def show() -> None:
            for address, text in slave.render(0, 12, DataType.UINT16):
                print(f"{address:>5}  {text}")

        slave.start_auto_refresh(show, 2000)
        print("Serving on port 5020 (Ctrl+C to stop)...")
        await asyncio.Event().wait()
    finally:
        await slave.stop()


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\nStopped.")


if __name__ == "__main__":
    main()
