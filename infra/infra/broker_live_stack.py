from aws_cdk import (
    Stack,
    Duration,
    RemovalPolicy,
    CfnOutput,
    Tags,
    aws_dynamodb as dynamodb,
    aws_lambda as lambda_,
    aws_apigatewayv2 as apigwv2,
    aws_apigatewayv2_integrations as apigwv2_integrations,
    aws_logs as logs,
    aws_cloudwatch as cloudwatch,
)
from constructs import Construct

class BrokerLiveStack(Stack):

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        internal_key: str,
        service_token: str = "",
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Common tags for all resources
        Tags.of(self).add("Project", "BrokerLive")
        Tags.of(self).add("Component", "broker-live-upsert")
        Tags.of(self).add("Env", "dev")

        # 1) DynamoDB table - one item per (user_id, broker, account_id)
        live_state_table = dynamodb.Table(
            self, "BrokerLiveStateTable",
            partition_key=dynamodb.Attribute(
                name="user_id",
                type=dynamodb.AttributeType.STRING
            ),
            sort_key=dynamodb.Attribute(
                name="broker_account",
                type=dynamodb.AttributeType.STRING
            ),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            point_in_time_recovery=True,
            removal_policy=RemovalPolicy.RETAIN
        )

        # Latest rows first for a user's dashboard
        live_state_table.add_global_secondary_index(
            index_name="user_updated_at_index",
            partition_key=dynamodb.Attribute(
                name="user_id",
                type=dynamodb.AttributeType.STRING
            ),
            sort_key=dynamodb.Attribute(
                name="updated_at",
                type=dynamodb.AttributeType.STRING
            ),
        )

        # 2) Lambda Functions
        upsert_environment = {
            "BROKER_LIVE_STATE_TABLE": live_state_table.table_name,
            "TJ_INTERNAL_KEY": internal_key,
        }
        if service_token:
            upsert_environment["BROKER_LIVE_SERVICE_TOKEN"] = service_token

        upsert_handler = lambda_.Function(
            self, "BrokerLiveUpsertHandler",
            runtime=lambda_.Runtime.PYTHON_3_11,
            handler="broker_live_upsert_handler.handler",
            code=lambda_.Code.from_asset("infra/lambda"),
            log_retention=logs.RetentionDays.ONE_WEEK,
            environment=upsert_environment
        )

        live_state_table.grant_write_data(upsert_handler)

        health_handler = lambda_.Function(
            self, "HealthHandler",
            runtime=lambda_.Runtime.PYTHON_3_11,
            handler="health_handler.handler",
            code=lambda_.Code.from_asset("infra/lambda"),
            log_retention=logs.RetentionDays.ONE_WEEK,
            environment={
                "BROKER_LIVE_STATE_TABLE": live_state_table.table_name
            }
        )

        live_state_table.grant(health_handler, "dynamodb:DescribeTable")

        # 3) API Gateway HTTP API
        http_api = apigwv2.HttpApi(
            self, "BrokerLiveHttpApi",
            api_name="broker-live-api"
        )

        upsert_integration = apigwv2_integrations.HttpLambdaIntegration(
            "BrokerLiveUpsertIntegration",
            upsert_handler
        )

        # ANY so the handler itself answers OPTIONS and 405
        http_api.add_routes(
            path="/broker-live-upsert",
            methods=[apigwv2.HttpMethod.ANY],
            integration=upsert_integration
        )

        health_integration = apigwv2_integrations.HttpLambdaIntegration(
            "HealthIntegration",
            health_handler
        )

        http_api.add_routes(
            path="/health",
            methods=[apigwv2.HttpMethod.GET],
            integration=health_integration
        )

        # 4) CloudWatch Alarm for API 5XX Errors (UPSERT_FAILED)
        api_5xx_alarm = cloudwatch.Alarm(
            self, "Api5xxAlarm",
            metric=cloudwatch.Metric(
                namespace="AWS/ApiGateway",
                metric_name="5XXError",
                dimensions_map={
                    "ApiId": http_api.api_id,
                    "Stage": "$default"
                },
                statistic="Sum",
                period=Duration.minutes(5)
            ),
            threshold=1,
            evaluation_periods=1,
            treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING
        )

        Tags.of(api_5xx_alarm).add("Project", "BrokerLive")
        Tags.of(api_5xx_alarm).add("Env", "dev")

        # 5) CDK Outputs
        CfnOutput(
            self, "BrokerLiveStateTableName",
            value=live_state_table.table_name,
            description="DynamoDB broker live state table"
        )

        CfnOutput(
            self, "UpsertEndpointUrl",
            value=(http_api.url or "") + "broker-live-upsert",
            description="Broker live upsert endpoint URL"
        )

        CfnOutput(
            self, "HealthEndpointUrl",
            value=(http_api.url or "") + "health",
            description="Health check endpoint URL"
        )

        CfnOutput(
            self, "Api5xxAlarmName",
            value=api_5xx_alarm.alarm_name,
            description="CloudWatch Alarm name for API 5XX errors"
        )
