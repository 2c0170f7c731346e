from abc import ABC
from typing import Generic, TypeVar

from scopegraph.errors import OperationDefinitionError

RegistrySign = TypeVar("RegistrySign")
RegistryRule = TypeVar("RegistryRule")


class InvalidRuleSign(OperationDefinitionError):
    def __init__(self, rule: object):
        super().__init__(f"Cannot extract the rule signature from '{rule}'")


class InvalidRule(OperationDefinitionError):
    def __init__(self, rule: object, reason: str):
        super().__init__(f"Invalid rule '{rule}': {reason}")


class RuleNotFound(LookupError):
    def __init__(self, signature: object):
        super().__init__(f"Rule for signature '{signature}' not found")
        self.signature = signature


class Registry(Generic[RegistrySign, RegistryRule], ABC):
    """A registry of rules, indexed by their signature. A rule can be registered with an
    explicit signature, or the registry can retrieve the signature from the rule itself."""

    def __init__(self, rules: dict[RegistrySign, RegistryRule] | None = None):
        self._rules: dict[RegistrySign, RegistryRule] = {} if rules is None else dict(rules)

    @classmethod
    def _validate_rule(cls, rule: RegistryRule) -> None:
        pass

    @classmethod
    def _retrieve_signature(cls, rule: RegistryRule) -> RegistrySign:
        raise InvalidRuleSign(rule)

    @property
    def signatures(self) -> list[RegistrySign]:
        return list(self._rules)

    def has_rule(self, signature: RegistrySign) -> bool:
        return signature in self._rules

    def add_rule(self, rule: RegistryRule, *, signature: RegistrySign | None = None) -> None:
        self._validate_rule(rule)
        if signature is None:
            signature = self._retrieve_signature(rule)
        self._rules[signature] = rule

    def retrieve_rule(self, signature: RegistrySign) -> RegistryRule:
        rule = self._rules.get(signature, None)
        if rule is not None:
            return rule
        raise RuleNotFound(signature)

    def __contains__(self, signature: object) -> bool:
        return signature in self._rules

    def __len__(self) -> int:
        return len(self._rules)
