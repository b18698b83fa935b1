from __future__ import annotations

import shlex

from stock_assistant_client.inventory_tools import TransferRequest

TRANSFER_USAGE = "Usage: /transfer <quantity> <product> <from_store> <to_store>"


def low_stock_utterance(location_id: int) -> str:
    return f"show low stock for store {location_id}"


def transfer_utterance(request: TransferRequest) -> str:
    return (
        f"transfer {request.quantity} {request.product_name} "
        f"from store {request.from_location_id} to {request.to_location_id}"
    )


def parse_command(command: str) -> list[str]:
    return shlex.split(command)


def parse_location_argument(parts: list[str], *, line_prefix: str, usage: str) -> tuple[int | None, str | None]:
    """Read the optional ``<store_id>`` that follows a command word."""
    if len(parts) < 2:
        return None, None
    if len(parts) > 2:
        return None, f"{line_prefix}{usage}"
    try:
        location_id = int(parts[1])
    except ValueError:
        return None, f"{line_prefix}store id must be an integer"
    if location_id <= 0:
        return None, f"{line_prefix}store id must be positive"
    return location_id, None


def parse_transfer_command(parts: list[str], *, line_prefix: str) -> tuple[TransferRequest | None, str | None]:
    # /transfer <qty> <product words...> <from> <to>
    if len(parts) < 5:
        return None, f"{line_prefix}{TRANSFER_USAGE}"
    try:
        quantity = int(parts[1])
        from_location_id = int(parts[-2])
        to_location_id = int(parts[-1])
    except ValueError:
        return None, f"{line_prefix}quantity and store ids must be integers"
    if quantity <= 0:
        return None, f"{line_prefix}quantity must be positive"
    if from_location_id == to_location_id:
        return None, f"{line_prefix}source and destination stores must differ"
    product_name = " ".join(parts[2:-2]).strip()
    if not product_name:
        return None, f"{line_prefix}{TRANSFER_USAGE}"
    return (
        TransferRequest(
            product_name=product_name,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            quantity=quantity,
        ),
        None,
    )
