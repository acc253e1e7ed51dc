#!/usr/bin/env python3
"""
Simple example of paying for a service call with the MPE SDK.
"""
import json
import os

from mpe_sdk import MPEClient, MPEError, SDKConfig


def main():
    """
    Demonstrate basic usage of the MPEClient.

    This example shows how to:
    1. Build the configuration from MPE_* environment variables
    2. Create a client for one service payment group
    3. Produce the payment metadata to attach to the next call
    """
    group_file = os.environ.get("SERVICE_GROUP_FILE")
    if not group_file:
        print("ERROR: SERVICE_GROUP_FILE environment variable is required")
        return

    if not os.environ.get("MPE_PRIVATE_KEY"):
        print("ERROR: MPE_PRIVATE_KEY environment variable is required")
        return

    # The payment group as published in the service metadata
    with open(group_file) as f:
        group = json.load(f)

    config = SDKConfig.from_env()
    client = MPEClient(config)
    print(f"Paying from {client.address}")

    try:
        with client.service_client(
            os.environ.get("ORG_ID", "snet"),
            os.environ.get("SERVICE_ID", "example-service"),
            group
        ) as service_client:
            print(f"Free calls available: {service_client.get_free_calls_available()}")

            metadata = service_client.get_payment_metadata()
            for key, value in metadata:
                shown = f"<{len(value)} bytes>" if isinstance(value, bytes) else value
                print(f"{key}: {shown}")

            for channel in service_client.load_open_channels():
                state = channel.state
                print(
                    f"PaymentChannel[id: {channel.channel_id}] "
                    f"available={state.available_amount} expiry={state.expiry}"
                )

    except MPEError as e:
        print(f"Error preparing payment: {str(e)}")


if __name__ == "__main__":
    main()
