import abc

from collections import namedtuple
from logzero import logger
from os.path import expanduser

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from chaosfleet.common import RUNNING_STATE
from chaosfleet.common.exceptions import (ConfigurationError, CredentialsError,
                                          ProviderError)
from chaosfleet.common.properties import parse_properties

from typing import List


class InstanceHandle(namedtuple('InstanceHandle', ['instance_id', 'state',
                                                   'public_address',
                                                   'private_address'])):
    """
    The provider's view of one instance. Addresses are None until assigned.
    """
    __slots__ = ()

    def is_ready(self) -> bool:
        return self.state == RUNNING_STATE and bool(self.public_address)


InstanceTemplate = namedtuple('InstanceTemplate', ['image_id', 'instance_type',
                                                   'key_name',
                                                   'security_group',
                                                   'subnet_id'])
Listener = namedtuple('Listener', ['protocol', 'port_in', 'port_out'])
BalancerDescriptor = namedtuple('BalancerDescriptor', ['name', 'dns_name',
                                                       'instance_ids'])

# AWS specific magic strings
AWS_PUBLIC_IP_FILTER = "ip-address"
AWS_BALANCER_NOT_FOUND = "LoadBalancerNotFound"
AWS_ACCESS_KEY = "accessKey"
AWS_SECRET_KEY = "secretKey"


class CloudProvider(object, metaclass=abc.ABCMeta):
    """
    The narrow set of provider capabilities chaosfleet depends on.

    Every call is synchronous. Implementations raise ProviderError when the
    provider rejects a call.
    """

    @abc.abstractmethod
    def create_instances(self, count: int,
                         template: InstanceTemplate) -> List[InstanceHandle]:
        raise NotImplementedError('users must define create_instances to use this base class')

    @abc.abstractmethod
    def describe_instances(self, instance_ids: List[str] = None,
                           public_addresses: List[str] = None
                           ) -> List[InstanceHandle]:
        raise NotImplementedError('users must define describe_instances to use this base class')

    @abc.abstractmethod
    def terminate_instances(self, instance_ids: List[str]) -> None:
        raise NotImplementedError('users must define terminate_instances to use this base class')

    @abc.abstractmethod
    def create_balancer(self, name: str, zones: List[str],
                        listener: Listener) -> BalancerDescriptor:
        raise NotImplementedError('users must define create_balancer to use this base class')

    @abc.abstractmethod
    def describe_balancers(self, names: List[str]) -> List[BalancerDescriptor]:
        raise NotImplementedError('users must define describe_balancers to use this base class')

    @abc.abstractmethod
    def register_instances(self, balancer_name: str,
                           instance_ids: List[str]) -> None:
        raise NotImplementedError('users must define register_instances to use this base class')

    def shutdown(self) -> None:
        pass


def _reason(e: Exception) -> str:
    if isinstance(e, ClientError):
        error = e.response.get('Error', {})
        return "{}: {}".format(error.get('Code', 'Unknown'),
                               error.get('Message', str(e)))
    return str(e)


class Boto3Provider(CloudProvider):
    """
    AWS binding: EC2 for instances, classic Elastic Load Balancing for
    balancers.
    """

    def __init__(self, ec2, elb):
        self.ec2 = ec2
        self.elb = elb

    @staticmethod
    def load_credentials(path: str) -> dict:
        """
        Read the access and secret key from a credentials properties file.

        The file holds 'accessKey=...' and 'secretKey=...' lines.
        """
        try:
            properties = parse_properties(path)
        except ConfigurationError as e:
            raise CredentialsError(
                "Credentials file {} could not be loaded".format(path)) from e

        missing = [key for key in (AWS_ACCESS_KEY, AWS_SECRET_KEY)
                   if not properties.get(key)]
        if missing:
            raise CredentialsError(
                "Credentials file {} is missing {}".format(path,
                                                           ", ".join(missing)))
        return {
            'aws_access_key_id': properties[AWS_ACCESS_KEY],
            'aws_secret_access_key': properties[AWS_SECRET_KEY]
        }

    @classmethod
    def from_properties(cls, properties) -> 'Boto3Provider':
        credentials_path = expanduser(properties.get("AWS_CREDENTIALS"))
        region = properties.get("AWS_REGION")
        credentials = cls.load_credentials(credentials_path)
        logger.debug("Creating EC2 and ELB clients for region %s", region)
        try:
            session = boto3.session.Session(region_name=region, **credentials)
            return cls(session.client('ec2'), session.client('elb'))
        except BotoCoreError as e:
            raise CredentialsError(
                "Unable to create provider clients: {}".format(e)) from e

    def shutdown(self) -> None:
        for client in (self.ec2, self.elb):
            close = getattr(client, 'close', None)
            if close:
                close()

    @staticmethod
    def _to_handle(instance: dict) -> InstanceHandle:
        return InstanceHandle(instance['InstanceId'],
                              instance.get('State', {}).get('Name'),
                              instance.get('PublicIpAddress'),
                              instance.get('PrivateIpAddress'))

    def create_instances(self, count, template):
        request = {
            'ImageId': template.image_id,
            'InstanceType': template.instance_type,
            'MinCount': count,
            'MaxCount': count,
            'KeyName': template.key_name
        }
        if template.subnet_id:
            request['SubnetId'] = template.subnet_id
        else:
            request['SecurityGroups'] = [template.security_group]

        logger.debug("run_instances: %s", request)
        try:
            result = self.ec2.run_instances(**request)
        except (ClientError, BotoCoreError) as e:
            raise ProviderError('run_instances', _reason(e)) from e
        return [self._to_handle(instance) for instance in result['Instances']]

    def describe_instances(self, instance_ids=None, public_addresses=None):
        request = {}
        if instance_ids:
            request['InstanceIds'] = list(instance_ids)
        if public_addresses:
            request['Filters'] = [{'Name': AWS_PUBLIC_IP_FILTER,
                                   'Values': list(public_addresses)}]
        if not request:
            raise ValueError("describe_instances needs instance ids or "
                             "public addresses")

        handles = []
        try:
            while True:
                result = self.ec2.describe_instances(**request)
                for reservation in result.get('Reservations', []):
                    for instance in reservation.get('Instances', []):
                        handles.append(self._to_handle(instance))
                next_token = result.get('NextToken')
                if not next_token:
                    break
                request['NextToken'] = next_token
        except (ClientError, BotoCoreError) as e:
            raise ProviderError('describe_instances', _reason(e)) from e
        return handles

    def terminate_instances(self, instance_ids):
        logger.debug("terminate_instances: %s", instance_ids)
        try:
            self.ec2.terminate_instances(InstanceIds=list(instance_ids))
        except (ClientError, BotoCoreError) as e:
            raise ProviderError('terminate_instances', _reason(e)) from e

    def create_balancer(self, name, zones, listener):
        listeners = [{
            'Protocol': listener.protocol,
            'LoadBalancerPort': listener.port_in,
            'InstancePort': listener.port_out
        }]
        try:
            result = self.elb.create_load_balancer(LoadBalancerName=name,
                                                   Listeners=listeners,
                                                   AvailabilityZones=list(zones))
        except (ClientError, BotoCoreError) as e:
            raise ProviderError('create_load_balancer', _reason(e)) from e
        return BalancerDescriptor(name, result.get('DNSName'), [])

    def describe_balancers(self, names):
        try:
            result = self.elb.describe_load_balancers(
                LoadBalancerNames=list(names))
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == AWS_BALANCER_NOT_FOUND:
                return []
            raise ProviderError('describe_load_balancers', _reason(e)) from e
        except BotoCoreError as e:
            raise ProviderError('describe_load_balancers', _reason(e)) from e

        return [BalancerDescriptor(description['LoadBalancerName'],
                                   description.get('DNSName'),
                                   [instance['InstanceId'] for instance
                                    in description.get('Instances', [])])
                for description in result.get('LoadBalancerDescriptions', [])]

    def register_instances(self, balancer_name, instance_ids):
        instances = [{'InstanceId': instance_id}
                     for instance_id in instance_ids]
        try:
            self.elb.register_instances_with_load_balancer(
                LoadBalancerName=balancer_name, Instances=instances)
        except (ClientError, BotoCoreError) as e:
            raise ProviderError('register_instances_with_load_balancer',
                                _reason(e)) from e
