#!/usr/bin/env python3
import os

import aws_cdk as cdk

from infra.broker_live_stack import BrokerLiveStack


internal_key = os.getenv('TJ_INTERNAL_KEY', '').strip()
if not internal_key:
    raise SystemExit("Missing TJ_INTERNAL_KEY env var.")

app = cdk.App()
BrokerLiveStack(app, "BrokerLiveStack",
    internal_key=internal_key,
    service_token=os.getenv('BROKER_LIVE_SERVICE_TOKEN', '').strip(),
    env=cdk.Environment(
        account=os.getenv('CDK_DEFAULT_ACCOUNT'),
        region=os.getenv('CDK_DEFAULT_REGION', 'eu-west-3')
    )
)

app.synth()
