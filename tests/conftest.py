import pytest


BAD_CONTRACT = """
use soroban_sdk::{contract, contractimpl, contracttype, Address, Env};

#[contracttype]
pub struct BadContract {
    admin: Address,
    counter: u128,
    unused_data: String,
}

#[contractimpl]
impl BadContract {
    pub fn new(admin: Address) -> Self {
        Self {
            admin,
            counter: 0,
            unused_data: "never_used".to_string(),
        }
    }

    pub fn increment(&mut self) {
        self.counter += 1;
        let expensive_vec = Vec::new();
        expensive_vec.push(1);
    }
}
"""

CLEAN_CONTRACT = """
use soroban_sdk::{contract, contractimpl, contracttype, Address};

#[contracttype]
pub struct Vault {
    pub owner: Address,
    pub balance: u64,
}

#[contractimpl]
impl Vault {
    pub fn deposit(&mut self, amount: u64) {
        self.balance += amount;
    }

    pub fn owner(&self) -> Address {
        self.owner.clone()
    }
}
"""


@pytest.fixture
def bad_contract():
    """Soroban source that trips five of the default rules"""
    return BAD_CONTRACT


@pytest.fixture
def clean_contract():
    return CLEAN_CONTRACT


@pytest.fixture(autouse=True)
def no_rule_config(monkeypatch):
    """Keep a developer's GASGUARD_CONFIG out of the test run"""
    monkeypatch.delenv("GASGUARD_CONFIG", raising=False)
