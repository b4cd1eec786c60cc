"""
Unit tests for GenerationClient: ordering, rotation, exhaustion, override,
timeouts, deadline, cancellation and credential confidentiality.
"""

import asyncio
import json

import httpx
import pytest
from pydantic import SecretStr

from backend.vault.core.errors import ConfigurationError, ResponseError, TransportError
from backend.vault.models.generation import (
    AttemptStatus,
    CredentialSet,
    GenerationFailure,
    GenerationRequest,
    GenerationResult,
    OverrideCredential,
    Provider,
)
from backend.vault.services.generation_client import GenerationClient
from backend.vault.services.providers import (
    AdapterResult,
    PerplexityAdapter,
    ProviderAdapter,
    ProviderPolicy,
)

GOOD_TEXT = "Question 1: How does connection pooling reduce latency under load? " * 4

PPLX_1 = "pplx-first-key-0000000000001"
PPLX_2 = "pplx-second-key-000000000002"
GEMINI_1 = "AIzaGeminiOnlyKey000000000003"
HF_1 = "hf_firsttoken00000000000000a"
HF_2 = "hf_secondtoken0000000000000b"
GROQ_1 = "gsk_groqkey000000000000000004"


class ScriptedAdapter(ProviderAdapter):
    """Succeeds only for the (credential, model) pairs it is told to."""

    def __init__(self, provider, succeed_on=(), transport_fail_on=(), default_model="default-model"):
        self.provider = provider
        super().__init__(ProviderPolicy(model=default_model))
        self.succeed_on = set(succeed_on)
        self.transport_fail_on = set(transport_fail_on)
        self.calls = []

    def build_request(self, credential, model, prompt):
        raise NotImplementedError

    def extract_text(self, payload, prompt):
        raise NotImplementedError

    async def generate(self, credential, prompt, *, model=None, timeout=30.0):
        self.calls.append((credential, model))
        if (credential, model) in self.succeed_on:
            return AdapterResult(text=GOOD_TEXT)
        if (credential, model) in self.transport_fail_on:
            return AdapterResult(error=TransportError(self.provider, "connection reset"))
        return AdapterResult(error=ResponseError(self.provider, f"HTTP 401: invalid key {credential}", 401))


class SleepyAdapter(ProviderAdapter):
    """Real ProviderAdapter.generate over a slow, always-failing call."""

    def __init__(self, provider, delay):
        self.provider = provider
        super().__init__(ProviderPolicy(model="slow-model"))
        self.delay = delay
        self.started = 0

    def build_request(self, credential, model, prompt):
        raise NotImplementedError

    def extract_text(self, payload, prompt):
        raise NotImplementedError

    async def _complete(self, credential, model, prompt, timeout):
        self.started += 1
        await asyncio.sleep(self.delay)
        raise ResponseError(self.provider, "HTTP 500")


def _sets(**by_provider):
    out = {}
    for name, value in by_provider.items():
        provider = Provider(name)
        if isinstance(value, tuple):
            credentials, models = value
        else:
            credentials, models = value, None
        out[provider] = CredentialSet(provider=provider, credentials=credentials, models=models)
    return out


def _generate(client, **request):
    return asyncio.run(client.generate(GenerationRequest(prompt="prompt", **request)))


class TestFirstSuccessWins:

    def test_falls_back_to_next_provider(self):
        pplx = ScriptedAdapter(Provider.PERPLEXITY)
        gemini = ScriptedAdapter(Provider.GEMINI, succeed_on={(GEMINI_1, None)})
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: pplx, Provider.GEMINI: gemini},
            credential_sets=_sets(perplexity=[PPLX_1], gemini=[GEMINI_1]),
        )

        result = _generate(client, provider_priority=[Provider.PERPLEXITY, Provider.GEMINI])

        assert isinstance(result, GenerationResult)
        assert result.provider == Provider.GEMINI
        assert result.text == GOOD_TEXT
        assert result.model == "default-model"
        assert [a.provider for a in result.attempts] == [Provider.PERPLEXITY, Provider.GEMINI]
        assert [a.status for a in result.attempts] == [AttemptStatus.RESPONSE_ERROR, AttemptStatus.SUCCESS]
        assert pplx.calls == [(PPLX_1, None)]

    def test_stops_at_first_success(self):
        pplx = ScriptedAdapter(Provider.PERPLEXITY, succeed_on={(PPLX_2, None)})
        gemini = ScriptedAdapter(Provider.GEMINI, succeed_on={(GEMINI_1, None)})
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: pplx, Provider.GEMINI: gemini},
            credential_sets=_sets(perplexity=[PPLX_1, PPLX_2], gemini=[GEMINI_1]),
        )

        result = _generate(client, provider_priority=[Provider.PERPLEXITY, Provider.GEMINI])

        assert result.provider == Provider.PERPLEXITY
        assert result.credential_index == 1
        assert gemini.calls == []

    def test_priority_order_is_callers_choice(self):
        pplx = ScriptedAdapter(Provider.PERPLEXITY, succeed_on={(PPLX_1, None)})
        groq = ScriptedAdapter(Provider.GROQ, succeed_on={(GROQ_1, None)})
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: pplx, Provider.GROQ: groq},
            credential_sets=_sets(perplexity=[PPLX_1], groq=[GROQ_1]),
        )

        result = _generate(client, provider_priority=[Provider.GROQ, Provider.PERPLEXITY])

        assert result.provider == Provider.GROQ
        assert pplx.calls == []

    def test_providers_without_keys_are_skipped(self):
        pplx = ScriptedAdapter(Provider.PERPLEXITY)
        gemini = ScriptedAdapter(Provider.GEMINI, succeed_on={(GEMINI_1, None)})
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: pplx, Provider.GEMINI: gemini},
            credential_sets=_sets(perplexity=[], gemini=[GEMINI_1]),
        )

        result = _generate(client, provider_priority=[Provider.PERPLEXITY, Provider.GEMINI])

        assert result.provider == Provider.GEMINI
        assert len(result.attempts) == 1


class TestExhaustion:

    def test_attempt_count_equals_all_combinations(self):
        adapters = {
            Provider.PERPLEXITY: ScriptedAdapter(Provider.PERPLEXITY),
            Provider.GEMINI: ScriptedAdapter(Provider.GEMINI),
            Provider.HUGGINGFACE: ScriptedAdapter(
                Provider.HUGGINGFACE, transport_fail_on={(HF_2, "m2")}
            ),
        }
        client = GenerationClient(
            adapters=adapters,
            credential_sets=_sets(
                perplexity=[PPLX_1, PPLX_2],
                gemini=[GEMINI_1],
                huggingface=([HF_1, HF_2], ["m1", "m2"]),
            ),
        )

        failure = _generate(
            client,
            provider_priority=[Provider.PERPLEXITY, Provider.GEMINI, Provider.HUGGINGFACE],
        )

        assert isinstance(failure, GenerationFailure)
        assert len(failure.attempts) == 2 + 1 + 2 * 2
        assert failure.attempts_by_provider == {"perplexity": 2, "gemini": 1, "huggingface": 4}
        assert failure.last_error_kind == AttemptStatus.TRANSPORT_ERROR
        assert "connection reset" in failure.last_error
        assert failure.requires_key is True
        assert failure.override_used is False
        assert failure.deadline_exceeded is False

    def test_repeated_provider_is_tried_once(self):
        pplx = ScriptedAdapter(Provider.PERPLEXITY)
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: pplx},
            credential_sets=_sets(perplexity=[PPLX_1]),
        )

        failure = _generate(client, provider_priority=[Provider.PERPLEXITY, Provider.PERPLEXITY])

        assert pplx.calls == [(PPLX_1, None)]
        assert len(failure.attempts) == 1

    def test_unsendable_key_does_not_stop_rotation(self):
        sent = []

        def handler(request):
            sent.append(request.headers["Authorization"])
            return httpx.Response(200, json={"choices": [{"message": {"content": GOOD_TEXT}}]})

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                client = GenerationClient(
                    adapters={Provider.PERPLEXITY: PerplexityAdapter(ProviderPolicy(model="sonar"), http_client=http)},
                    credential_sets=_sets(perplexity=["pplx-bad-key-with-\u2026-ellipsis", PPLX_2]),
                )
                return await client.generate(
                    GenerationRequest(prompt="prompt", provider_priority=[Provider.PERPLEXITY])
                )

        result = asyncio.run(go())

        assert isinstance(result, GenerationResult)
        assert result.credential_index == 1
        assert sent == [f"Bearer {PPLX_2}"]
        assert result.attempts[0].status == AttemptStatus.TRANSPORT_ERROR

    def test_no_credentials_fails_fast(self):
        pplx = ScriptedAdapter(Provider.PERPLEXITY)
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: pplx},
            credential_sets=_sets(perplexity=[]),
        )

        with pytest.raises(ConfigurationError):
            _generate(client, provider_priority=[Provider.PERPLEXITY, Provider.GEMINI])
        assert pplx.calls == []


class TestOverride:

    def test_override_bypasses_priority_list(self):
        pplx = ScriptedAdapter(Provider.PERPLEXITY, succeed_on={(PPLX_1, None)})
        groq = ScriptedAdapter(Provider.GROQ, succeed_on={("gsk_user_supplied_key_12345", None)})
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: pplx, Provider.GROQ: groq},
            credential_sets=_sets(perplexity=[PPLX_1]),
        )

        result = _generate(
            client,
            provider_priority=[Provider.PERPLEXITY],
            override=OverrideCredential(provider=Provider.GROQ, credential=SecretStr("gsk_user_supplied_key_12345")),
        )

        assert result.provider == Provider.GROQ
        assert result.override_used is True
        assert len(result.attempts) == 1
        assert pplx.calls == []

    def test_failed_override_does_not_fall_through(self):
        pplx = ScriptedAdapter(Provider.PERPLEXITY, succeed_on={(PPLX_1, None)})
        gemini = ScriptedAdapter(Provider.GEMINI)
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: pplx, Provider.GEMINI: gemini},
            credential_sets=_sets(perplexity=[PPLX_1]),
        )

        failure = _generate(
            client,
            provider_priority=[Provider.PERPLEXITY],
            override=OverrideCredential(provider=Provider.GEMINI, credential=SecretStr("AIzaUserKey00000000000")),
        )

        assert isinstance(failure, GenerationFailure)
        assert failure.override_used is True
        assert failure.requires_key is False
        assert len(failure.attempts) == 1
        assert pplx.calls == []

    def test_override_rotates_models_of_its_provider(self):
        user_key = "hf_usersuppliedtoken00000"
        hf = ScriptedAdapter(Provider.HUGGINGFACE, succeed_on={(user_key, "m2")})
        client = GenerationClient(
            adapters={Provider.HUGGINGFACE: hf},
            credential_sets=_sets(huggingface=([HF_1], ["m1", "m2"])),
        )

        result = _generate(
            client,
            override=OverrideCredential(provider=Provider.HUGGINGFACE, credential=SecretStr(user_key)),
        )

        assert result.model == "m2"
        assert hf.calls == [(user_key, "m1"), (user_key, "m2")]

    def test_override_for_unknown_adapter(self):
        client = GenerationClient(adapters={}, credential_sets={})

        with pytest.raises(ConfigurationError):
            _generate(
                client,
                override=OverrideCredential(provider=Provider.GROQ, credential=SecretStr("gsk_x")),
            )


class TestModelRotation:

    def test_credential_outer_model_inner(self):
        hf = ScriptedAdapter(Provider.HUGGINGFACE, succeed_on={(HF_2, "m1")})
        client = GenerationClient(
            adapters={Provider.HUGGINGFACE: hf},
            credential_sets=_sets(huggingface=([HF_1, HF_2], ["m1", "m2"])),
        )

        result = _generate(client, provider_priority=[Provider.HUGGINGFACE])

        assert hf.calls == [(HF_1, "m1"), (HF_1, "m2"), (HF_2, "m1")]
        assert [(a.credential_index, a.model) for a in result.attempts] == [(0, "m1"), (0, "m2"), (1, "m1")]
        assert result.credential_index == 1
        assert result.model == "m1"


class TestTimeouts:

    def test_timeout_is_recorded_and_loop_continues(self):
        slow = SleepyAdapter(Provider.PERPLEXITY, delay=5)
        gemini = ScriptedAdapter(Provider.GEMINI, succeed_on={(GEMINI_1, None)})
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: slow, Provider.GEMINI: gemini},
            credential_sets=_sets(perplexity=[PPLX_1], gemini=[GEMINI_1]),
            attempt_timeout=0.05,
        )

        result = _generate(client, provider_priority=[Provider.PERPLEXITY, Provider.GEMINI])

        assert result.provider == Provider.GEMINI
        first = result.attempts[0]
        assert first.status == AttemptStatus.TRANSPORT_ERROR
        assert first.error == "timeout"

    def test_overall_deadline_stops_the_chain(self):
        slow = SleepyAdapter(Provider.PERPLEXITY, delay=0.2)
        keys = [f"pplx-deadline-key-00000000{i}" for i in range(5)]
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: slow},
            credential_sets=_sets(perplexity=keys),
            attempt_timeout=10,
            deadline=0.3,
        )

        failure = _generate(client, provider_priority=[Provider.PERPLEXITY])

        assert isinstance(failure, GenerationFailure)
        assert failure.deadline_exceeded is True
        assert len(failure.attempts) < len(keys)

    def test_deadline_cutting_the_last_attempt_is_reported(self):
        slow = SleepyAdapter(Provider.PERPLEXITY, delay=1)
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: slow},
            credential_sets=_sets(perplexity=[PPLX_1]),
            attempt_timeout=10,
            deadline=0.1,
        )

        failure = _generate(client, provider_priority=[Provider.PERPLEXITY])

        assert len(failure.attempts) == 1
        assert failure.attempts[0].error == "timeout"
        assert failure.deadline_exceeded is True

    def test_cancellation_propagates(self):
        slow = SleepyAdapter(Provider.PERPLEXITY, delay=5)
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: slow},
            credential_sets=_sets(perplexity=[PPLX_1, PPLX_2]),
        )

        async def go():
            task = asyncio.create_task(
                client.generate(GenerationRequest(prompt="prompt", provider_priority=[Provider.PERPLEXITY]))
            )
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(go())
        assert slow.started == 1


class TestNoCredentialLeakage:

    def test_results_and_logs_only_carry_masked_keys(self, caplog):
        pplx = ScriptedAdapter(Provider.PERPLEXITY)
        hf = ScriptedAdapter(Provider.HUGGINGFACE, succeed_on={(HF_1, "m2")})
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: pplx, Provider.HUGGINGFACE: hf},
            credential_sets=_sets(perplexity=[PPLX_1], huggingface=([HF_1], ["m1", "m2"])),
        )

        with caplog.at_level("DEBUG"):
            result = _generate(client, provider_priority=[Provider.PERPLEXITY, Provider.HUGGINGFACE])

        dumped = result.model_dump_json()
        for secret in (PPLX_1, HF_1):
            assert secret not in dumped
            assert secret not in caplog.text
        assert result.masked_credential == "hf_fi...000a"
        assert result.attempts[0].masked_credential == "pplx-fir...0001"

    def test_failure_serialization_is_masked(self):
        client = GenerationClient(
            adapters={Provider.PERPLEXITY: ScriptedAdapter(Provider.PERPLEXITY)},
            credential_sets=_sets(perplexity=[PPLX_1, PPLX_2]),
        )

        failure = _generate(client, provider_priority=[Provider.PERPLEXITY])
        dumped = json.dumps(failure.model_dump(mode="json"))

        assert isinstance(failure, GenerationFailure)
        assert "pplx-fir...0001" in dumped
        assert PPLX_1 not in dumped
        assert PPLX_2 not in dumped
