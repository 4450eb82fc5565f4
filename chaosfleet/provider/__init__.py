"""
Cloud provider binding.

Actions and probes talk to the cloud through the CloudProvider interface only.
Boto3Provider is the AWS implementation; tests use a fake.
"""
