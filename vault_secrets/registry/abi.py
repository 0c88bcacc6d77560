"""
Workflow registry ABI fragments (minimal, artifact-free).

Only the calls used for request allowlisting and owner linkage are listed.
"""

WORKFLOW_REGISTRY_ABI_MIN = [
    {
        "inputs": [
            {"internalType": "address", "name": "owner", "type": "address"},
            {"internalType": "bytes32", "name": "requestDigest", "type": "bytes32"},
        ],
        "name": "isRequestAllowlisted",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "bytes32", "name": "requestDigest", "type": "bytes32"},
            {"internalType": "uint32", "name": "expiryTimestamp", "type": "uint32"},
        ],
        "name": "allowlistRequest",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "owner", "type": "address"}],
        "name": "isOwnerLinked",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "owner", "type": "address"},
            {"indexed": True, "internalType": "bytes32", "name": "requestDigest", "type": "bytes32"},
            {"indexed": False, "internalType": "uint32", "name": "expiryTimestamp", "type": "uint32"},
        ],
        "name": "RequestAllowlisted",
        "type": "event",
    },
]

ALLOWLIST_REQUEST_SIGNATURE = "allowlistRequest(bytes32,uint32)"


def get_abi(contract_name: str):
    mapping = {
        "WorkflowRegistry": WORKFLOW_REGISTRY_ABI_MIN,
    }
    return mapping.get(contract_name)
