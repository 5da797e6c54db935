from pathlib import Path

import protocol_deployment

#
# Filesystem
#

DEPLOYMENT_DIR = Path(protocol_deployment.__file__).parent
CONSTRUCTOR_PARAMS_DIR = DEPLOYMENT_DIR / "constructor_params"
PROFILES_DIR = DEPLOYMENT_DIR / "profiles"
ARTIFACTS_DIR = DEPLOYMENT_DIR / "artifacts"

PROTOCOL_DEFINITION_FILEPATH = CONSTRUCTOR_PARAMS_DIR / "protocol.yml"

#
# Networks
#

LOCAL_NETWORKS = ["local", "development", "hardhat"]
FORK_SUFFIX = "-fork"

#
# Stages
#

MODULES_STAGE = "modules"
CORE_STAGE = "core"
READER_STAGE = "reader"
STRATEGY_STAGE = "strategy"

PIPELINE_STAGES = [MODULES_STAGE, CORE_STAGE, READER_STAGE, STRATEGY_STAGE]

#
# Contracts
#

OZ_DEPENDENCY_NAME = "openzeppelin"
OZ_DEPENDENCY_VERSION = "5.0.0"
PROXY_NAME = "TransparentUpgradeableProxy"
PROXY_ADMIN_NAME = "ProxyAdmin"

# hardhat-deploy style naming for the logic contract behind a proxy
IMPLEMENTATION_SUFFIX = "_Implementation"

# EIP1967 Admin slot - https://eips.ethereum.org/EIPS/eip-1967#admin-address
EIP1967_ADMIN_SLOT = 0xB53127684A568B3173AE13B9F8A6016E243E63B6E8EE1178D6A717850B5D6103

# Deployed locally in place of the stable asset on networks without a profile
LOCAL_STABLE_ASSET_NAME = "MockERC20"

#
# Bootstrap
#

REGISTER_PAIR_GROUP_METHOD = "addPairGroup"
REGISTER_PAIR_METHOD = "addPair"
UPDATE_ASSET_RISK_PARAMS_METHOD = "updateAssetRiskParams"

# the protocol core the maintenance commands act on
CORE_CONTRACT_NAME = "Controller"

# pair group ids are allocated by the core contract starting from 1
FIRST_PAIR_GROUP_ID = 1
