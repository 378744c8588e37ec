#!/usr/bin/env python3
"""Example: connect to a Modbus TCP device, write a Float32 and read it back."""

import asyncio
import sys

from modbus_testtool import ReadRequest, TcpConfig, WriteRequest
from modbus_testtool.client import MasterSession
from modbus_testtool.errors import TransportError, ValueValidationError
from modbus_testtool.types import DataType, WriteFunction


async def run() -> None:
    config = TcpConfig(host="127.0.0.1", port=502)  # change to your device

    async with MasterSession(config) as master:
        # Two registers at 100/101, high word first
        await master.write(
            WriteRequest(value="3.14", function=WriteFunction.REGISTERS, address=100, data_type=DataType.FLOAT32)
        )

        result = await master.read(ReadRequest(address=100, length=4, data_type=DataType.FLOAT32))
        for address, text in result.rows():
            print(f"{address}: {text}")

        # Everything the session did, with timestamps
        print(master.log.text())


def main() -> None:
    try:
        asyncio.run(run())
    except ValueValidationError as e:
        print(f"Invalid value: {e}", file=sys.stderr)
        sys.exit(1)
    except TransportError as e:
        print(f"Modbus/connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
