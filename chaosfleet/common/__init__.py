from enum import Enum

# Actions may be written to select agents on which to act. The following enum
# allows an action to pick a number of agents out of the ordered registry in a
# certain number of ways.
# Example: If the registry holds ['A', 'B', 'C'] (insertion order) and two of
#          them should be removed, a FORWARD strategy removes A followed by B
#          (the oldest agents). A REVERSE strategy removes C followed by B. The
#          RANDOM strategy picks an agent at random, removes it from
#          consideration on the next selection and then repeats the process one
#          more time.
class SelectionStrategy(Enum):
    """
    All supported selection strategies.
    """
    FORWARD = 1
    REVERSE = 2
    RANDOM = 3


# Provider lifecycle state names
RUNNING_STATE = "running"
PENDING_STATE = "pending"
TERMINATING_STATE = "shutting-down"
TERMINATED_STATE = "terminated"
GONE_STATES = (TERMINATING_STATE, TERMINATED_STATE)


# Fleet defaults
# Please keep defaults in lexically acending order by name
DEFAULT_FLEET_AGENT_CONNECT_TIMEOUT=30
DEFAULT_FLEET_AGENT_CONTROL_COMMAND="agent-control"
DEFAULT_FLEET_AGENT_SSH_USER="ubuntu"
DEFAULT_FLEET_AGENTS_FILE="agents.txt"
DEFAULT_FLEET_AWS_BOXID="m1.small"
DEFAULT_FLEET_AWS_CREDENTIALS="awscredentials.properties"
DEFAULT_FLEET_AWS_KEY_NAME="simulator"
DEFAULT_FLEET_AWS_REGION="us-east-1"
DEFAULT_FLEET_ELB_FILE="aws-elb.txt"
DEFAULT_FLEET_ELB_PORT_IN=0
DEFAULT_FLEET_ELB_PORT_OUT=0
DEFAULT_FLEET_ELB_PROTOCOL="tcp"
DEFAULT_FLEET_ELB_ZONES="us-east-1a"
DEFAULT_FLEET_POLL_INTERVAL_SECONDS=30
DEFAULT_FLEET_POLL_MAX_ATTEMPTS=12
DEFAULT_FLEET_PROPERTIES_FILE="fleet.properties"
DEFAULT_FLEET_SECURITY_GROUP="simulator"
DEFAULT_FLEET_SUBNET_ID=""
