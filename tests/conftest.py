from __future__ import annotations

import copy

import pytest

from contract_gate.compiler import CompilerBackend

CLEAN_SOURCE = (
    "// SPDX-License-Identifier: MIT\n"
    "pragma solidity ^0.8.24;\n"
    "\n"
    "contract Counter {\n"
    "    uint256 public count;\n"
    "\n"
    "    function increment() external {\n"
    "        count += 1;\n"
    "    }\n"
    "}\n"
)

CREATION_BYTECODE = "6080604052348015600f57600080fd5b50603e80601d6000396000f3fe"
DEPLOYED_BYTECODE = "6080604052348015600f57600080fd5b50"


class FakeBackend(CompilerBackend):
    def __init__(self, output: dict):
        self.output = output
        self.calls: list[dict] = []

    def compile(self, standard_input: dict) -> dict:
        self.calls.append(standard_input)
        return copy.deepcopy(self.output)


def contract_output(
    name: str = "Counter",
    source_file: str = "Counter.sol",
    creation: str = CREATION_BYTECODE,
    deployed: str = DEPLOYED_BYTECODE,
) -> dict:
    return {
        source_file: {
            name: {
                "abi": [
                    {
                        "inputs": [],
                        "name": "increment",
                        "outputs": [],
                        "stateMutability": "nonpayable",
                        "type": "function",
                    }
                ],
                "evm": {
                    "bytecode": {"object": creation},
                    "deployedBytecode": {"object": deployed},
                    "gasEstimates": {
                        "creation": {"codeDepositCost": "12400", "executionCost": "infinite"},
                        "external": {"increment()": "24392"},
                    },
                },
            }
        }
    }


@pytest.fixture
def clean_source() -> str:
    return CLEAN_SOURCE


@pytest.fixture
def make_contract():
    return contract_output


@pytest.fixture
def fake_backend():
    def build(contracts: dict | None = None, errors: list | None = None) -> FakeBackend:
        output: dict = {"contracts": contracts if contracts is not None else contract_output()}
        if errors is not None:
            output["errors"] = errors
        return FakeBackend(output)

    return build
