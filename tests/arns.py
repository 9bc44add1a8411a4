DB_CREDENTIAL_ARN = "arn:aws:secretsmanager:us-east-1:123456789012:secret:portal-db"
OKTA_ARN = "arn:aws:secretsmanager:us-east-1:123456789012:secret:okta"
GITLAB_ARN = "arn:aws:secretsmanager:us-east-1:123456789012:secret:gitlab-admin"
KMS_KEY_ARN = "arn:aws:kms:us-east-1:123456789012:key/0d1e"
