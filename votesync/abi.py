"""Governor ABI fragments for the two events the sync engine reads.

Matches OpenZeppelin ``GovernorUpgradeable`` as deployed for the Livepeer treasury.
"""
from __future__ import annotations

PROPOSAL_CREATED_EVENT = {
    "anonymous": False,
    "name": "ProposalCreated",
    "type": "event",
    "inputs": [
        {"indexed": False, "internalType": "uint256", "name": "proposalId", "type": "uint256"},
        {"indexed": False, "internalType": "address", "name": "proposer", "type": "address"},
        {"indexed": False, "internalType": "address[]", "name": "targets", "type": "address[]"},
        {"indexed": False, "internalType": "uint256[]", "name": "values", "type": "uint256[]"},
        {"indexed": False, "internalType": "string[]", "name": "signatures", "type": "string[]"},
        {"indexed": False, "internalType": "bytes[]", "name": "calldatas", "type": "bytes[]"},
        {"indexed": False, "internalType": "uint256", "name": "voteStart", "type": "uint256"},
        {"indexed": False, "internalType": "uint256", "name": "voteEnd", "type": "uint256"},
        {"indexed": False, "internalType": "string", "name": "description", "type": "string"},
    ],
}

VOTE_CAST_EVENT = {
    "anonymous": False,
    "name": "VoteCast",
    "type": "event",
    "inputs": [
        {"indexed": True, "internalType": "address", "name": "voter", "type": "address"},
        {"indexed": False, "internalType": "uint256", "name": "proposalId", "type": "uint256"},
        {"indexed": False, "internalType": "uint8", "name": "support", "type": "uint8"},
        {"indexed": False, "internalType": "uint256", "name": "weight", "type": "uint256"},
        {"indexed": False, "internalType": "string", "name": "reason", "type": "string"},
    ],
}

GOVERNOR_ABI = [PROPOSAL_CREATED_EVENT, VOTE_CAST_EVENT]
