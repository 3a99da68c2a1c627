import asyncio
import logging
from unittest import mock

import pytest

from conftest import (
    BlockingInput,
    FailingOutput,
    FailingService,
    ListInput,
    RecordingOutput,
    RecordingService,
)
from service_io.config import DuplicatePolicy, EngineConfig
from service_io.connectors import QueueInput
from service_io.core.engine import Engine
from service_io.core.router import Router
from service_io.errors import ConfigurationError
from service_io.message import Message
from service_io.services import Alarm, Echo


async def run_engine(engine: Engine, timeout: float = 5.0) -> None:
    await asyncio.wait_for(engine.run(), timeout)


class TestConfiguration:
    @pytest.mark.asyncio
    async def test_no_inputs_is_fatal(self):
        engine = Engine().output(RecordingOutput()).add_service('echo', Echo())
        with pytest.raises(ConfigurationError):
            await engine.run()

    @pytest.mark.asyncio
    async def test_empty_key_is_fatal_at_run(self, make_message):
        engine = Engine().input(ListInput([make_message()])).add_service('', Echo())
        with pytest.raises(ConfigurationError):
            await engine.run()

    @pytest.mark.asyncio
    async def test_duplicate_key_is_fatal_under_reject(self):
        engine = Engine().input(ListInput([])).add_service('echo', Echo()).add_service('echo', Echo())
        with pytest.raises(ConfigurationError):
            await engine.run()

    @pytest.mark.asyncio
    async def test_duplicate_key_replaced_under_replace(self, make_message, output):
        first, second = RecordingService(), RecordingService()
        engine = Engine(EngineConfig(duplicate_policy=DuplicatePolicy.REPLACE))
        engine.input(ListInput([make_message()])).output(output)
        engine.add_service('echo', first).add_service('echo', second)
        await run_engine(engine)
        assert first.calls == []
        assert len(second.calls) == 1

    @pytest.mark.asyncio
    async def test_builder_closed_after_run(self, make_message):
        engine = Engine().input(ListInput([make_message()])).add_service('echo', Echo())
        await run_engine(engine)
        with pytest.raises(ConfigurationError):
            engine.output(RecordingOutput())
        with pytest.raises(ConfigurationError):
            await engine.run()

    @pytest.mark.asyncio
    async def test_zero_outputs_allowed(self, make_message, caplog):
        engine = Engine().input(ListInput([make_message()])).add_service('echo', Echo())
        await run_engine(engine)
        assert 'No outputs registered' in caplog.text
        assert engine.stats['responses'] == 1


class TestDispatch:
    @pytest.mark.asyncio
    async def test_echo_scenario(self, output):
        engine = Engine().input(ListInput([Message(key='echo', body='hi')]))
        engine.output(output).add_service('echo', Echo())
        await run_engine(engine)
        assert [m.body for m in output.sent] == ['hi']

    @pytest.mark.asyncio
    async def test_whitelist_scenario(self, output):
        svc = RecordingService()
        engine = Engine().input(ListInput([Message(key='ping', origin='b@x.com')]))
        engine.output(output).add_service_for('ping', svc, {'a@x.com'})
        await run_engine(engine)
        assert output.sent == []
        assert svc.calls == []
        assert engine.stats['rejected'] == 1

    @pytest.mark.asyncio
    async def test_whitelist_given_as_single_address(self, output):
        engine = Engine().input(ListInput([
            Message(key='run', origin='a', body='intruder'),
            Message(key='run', origin='admin@x.com', body='admin'),
        ]))
        engine.output(output).add_service_for('run', Echo(), 'admin@x.com')
        await run_engine(engine)
        assert [m.body for m in output.sent] == ['admin']

    @pytest.mark.asyncio
    async def test_filtered_message_never_reaches_service(self, make_message, output):
        svc = RecordingService()
        engine = Engine().input(ListInput([make_message(body='spam'), make_message(body='ok')]))
        engine.output(output).add_service('echo', svc).filter_input(lambda m: m.body != 'spam')
        await run_engine(engine)
        assert [m.body for m in svc.calls] == ['ok']
        assert engine.stats['dropped'] == 1

    @pytest.mark.asyncio
    async def test_unmatched_key_does_not_stop_engine(self, make_message, output):
        engine = Engine().input(ListInput([make_message('unknown'), make_message('echo', body='after')]))
        engine.output(output).add_service('echo', Echo())
        await run_engine(engine)
        assert [m.body for m in output.sent] == ['after']
        assert engine.stats['unmatched'] == 1

    @pytest.mark.asyncio
    async def test_messages_from_one_input_keep_order(self, make_message, output):
        svc = RecordingService()
        messages = [make_message(body=f'm{i}') for i in range(1, 6)]
        engine = Engine().input(ListInput(messages)).output(output).add_service('echo', svc)
        await run_engine(engine)
        assert [m.body for m in svc.calls] == ['m1', 'm2', 'm3', 'm4', 'm5']
        assert [m.body for m in output.sent] == ['m1', 'm2', 'm3', 'm4', 'm5']

    @pytest.mark.asyncio
    async def test_failed_service_produces_no_delivery(self, make_message, output):
        svc = FailingService(fail_on='bad')
        engine = Engine().input(ListInput([
            make_message('work', args=('bad',), body='first'),
            make_message('work', args=('good',), body='second'),
        ]))
        engine.output(output).add_service('work', svc)
        await run_engine(engine)
        assert svc.calls == 2
        assert [m.body for m in output.sent] == ['second']
        assert engine.stats['service_failures'] == 1

    @pytest.mark.asyncio
    async def test_unexpected_service_exception_is_contained(self, make_message, output):
        def broken(message):
            raise RuntimeError('boom')

        engine = Engine().input(ListInput([make_message('x'), make_message('echo')]))
        engine.output(output).add_service('x', broken).add_service('echo', Echo())
        await run_engine(engine)
        assert len(output.sent) == 1
        assert engine.stats['service_failures'] == 1

    @pytest.mark.asyncio
    async def test_no_reply_is_not_a_failure(self, make_message, output):
        engine = Engine().input(ListInput([make_message()]))
        engine.output(output).add_service('echo', RecordingService(reply=False))
        await run_engine(engine)
        assert output.sent == []
        assert engine.stats['processed'] == 1
        assert engine.stats['service_failures'] == 0

    @pytest.mark.asyncio
    async def test_wrong_return_type_is_a_failure(self, make_message, output):
        engine = Engine().input(ListInput([make_message()]))
        engine.output(output).add_service('echo', lambda m: 'not a message')
        await run_engine(engine)
        assert output.sent == []
        assert engine.stats['service_failures'] == 1

    @pytest.mark.asyncio
    async def test_sync_function_service(self, make_message, output):
        engine = Engine().input(ListInput([make_message(body='abc')]))
        engine.output(output).add_service('echo', lambda m: m.with_body(m.body.upper()))
        await run_engine(engine)
        assert output.sent[0].body == 'ABC'

    @pytest.mark.asyncio
    async def test_map_input_applies_before_routing(self, make_message, output):
        from service_io.message import lowercase_first_char
        engine = Engine().input(ListInput([make_message('Echo')]))
        engine.output(output).add_service('echo', Echo()).map_input(lowercase_first_char)
        await run_engine(engine)
        assert output.sent[0].key == 'echo'

    @pytest.mark.asyncio
    async def test_multiple_inputs(self, make_message, output):
        engine = Engine().output(output).add_service('echo', Echo())
        engine.input(ListInput([make_message(body='a1'), make_message(body='a2')]))
        engine.input(ListInput([make_message(body='b1')]))
        await run_engine(engine)
        assert sorted(m.body for m in output.sent) == ['a1', 'a2', 'b1']
        assert engine.stats['received'] == 3


class TestBadTransforms:
    @pytest.mark.asyncio
    async def test_non_message_transform_does_not_end_input(self, make_message, output):
        engine = Engine().input(ListInput([make_message('skip'), make_message('echo', body='after')]))
        engine.output(output).add_service('echo', Echo())
        engine.add_transform(lambda m: m if m.key != 'skip' else True)
        await run_engine(engine)
        assert [m.body for m in output.sent] == ['after']
        assert engine.stats['received'] == 2
        assert engine.stats['dropped'] == 1

    @pytest.mark.asyncio
    async def test_dispatch_error_is_logged_and_counted(self, make_message, output, caplog):
        original = Router.resolve
        calls = []

        def flaky_resolve(self, message):
            calls.append(message)
            if len(calls) == 1:
                raise RuntimeError('routing table corrupted')
            return original(self, message)

        engine = Engine().input(ListInput([make_message(body='first'), make_message(body='second')]))
        engine.output(output).add_service('echo', Echo())
        with mock.patch.object(Router, 'resolve', flaky_resolve):
            await run_engine(engine)
        assert [m.body for m in output.sent] == ['second']
        assert engine.stats['dispatch_errors'] == 1
        assert 'routing table corrupted' in caplog.text


class TestFanOut:
    @pytest.mark.asyncio
    async def test_every_output_gets_the_response_once(self, make_message):
        outputs = [RecordingOutput(), RecordingOutput(delay=0.01), RecordingOutput()]
        engine = Engine().input(ListInput([make_message()])).add_service('echo', Echo())
        for o in outputs:
            engine.output(o)
        await run_engine(engine)
        assert [len(o.sent) for o in outputs] == [1, 1, 1]
        assert engine.stats['deliveries'] == 3

    @pytest.mark.asyncio
    async def test_failing_output_does_not_suppress_others(self, make_message, output):
        failing = FailingOutput()
        crashing = FailingOutput(RuntimeError('socket closed'))
        engine = Engine().input(ListInput([make_message(), make_message()])).add_service('echo', Echo())
        engine.output(failing).output(crashing).output(output)
        await run_engine(engine)
        assert failing.attempts == 2
        assert crashing.attempts == 2
        assert len(output.sent) == 2
        assert engine.stats['delivery_failures'] == 4

    @pytest.mark.asyncio
    async def test_output_timeout_counts_as_failure(self, make_message, output):
        slow = RecordingOutput(delay=1.0)
        engine = Engine(EngineConfig(output_timeout=0.05))
        engine.input(ListInput([make_message()])).add_service('echo', Echo())
        engine.output(slow).output(output)
        await run_engine(engine)
        assert slow.sent == []
        assert len(output.sent) == 1
        assert engine.stats['delivery_failures'] == 1


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_service_timeout_produces_no_delivery(self, make_message, output):
        async def slow(message):
            await asyncio.sleep(1.0)
            return message

        engine = Engine(EngineConfig(service_timeout=0.05))
        engine.input(ListInput([make_message('slow'), make_message('echo')]))
        engine.output(output).add_service('slow', slow).add_service('echo', Echo())
        await run_engine(engine)
        assert [m.key for m in output.sent] == ['echo']
        assert engine.stats['service_failures'] == 1

    @pytest.mark.asyncio
    async def test_route_timeout_overrides_default(self, make_message, output):
        async def slow(message):
            await asyncio.sleep(0.1)
            return message

        engine = Engine(EngineConfig(service_timeout=0.01))
        engine.input(ListInput([make_message('slow')])).output(output)
        engine.add_service('slow', slow, timeout=2.0)
        await run_engine(engine)
        assert len(output.sent) == 1


class TestInputErrors:
    @pytest.mark.asyncio
    async def test_input_error_is_retried(self, make_message, output):
        class FlakyInput(ListInput):
            failed = False

            async def next(self):
                if not self.failed:
                    self.failed = True
                    raise ConnectionError('network hiccup')
                return await super().next()

        engine = Engine(EngineConfig(input_error_backoff=0))
        engine.input(FlakyInput([make_message()])).output(output).add_service('echo', Echo())
        await run_engine(engine)
        assert len(output.sent) == 1
        assert engine.stats['input_errors'] == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_run_returns_when_inputs_exhausted_and_closes(self, make_message, output):
        source = ListInput([make_message()])
        alarm = Alarm()
        engine = Engine().input(source).output(output).add_service('alarm', alarm)
        await run_engine(engine)
        assert source.closed
        assert output.closed

    @pytest.mark.asyncio
    async def test_shutdown_while_inputs_blocked(self, output):
        source = BlockingInput()
        engine = Engine().input(source).output(output).add_service('echo', Echo())
        task = asyncio.ensure_future(engine.run())
        await asyncio.sleep(0.05)
        assert engine.running
        engine.shutdown()
        await asyncio.wait_for(task, 2.0)
        assert source.cancelled
        assert source.closed
        assert not engine.running

    @pytest.mark.asyncio
    async def test_shutdown_before_run(self):
        source = BlockingInput()
        engine = Engine().input(source)
        engine.shutdown()
        await asyncio.wait_for(engine.run(), 2.0)
        assert source.closed

    @pytest.mark.asyncio
    async def test_in_flight_dispatch_drains(self, output):
        started = asyncio.Event()

        async def slow(message):
            started.set()
            await asyncio.sleep(0.1)
            return message

        queue_input = QueueInput()
        engine = Engine().input(queue_input).output(output).add_service('slow', slow)
        task = asyncio.ensure_future(engine.run())
        await queue_input.put(Message(origin='a@x.com', key='slow', body='late'))
        await asyncio.wait_for(started.wait(), 2.0)
        engine.shutdown()
        await asyncio.wait_for(task, 2.0)
        assert [m.body for m in output.sent] == ['late']

    @pytest.mark.asyncio
    async def test_drain_timeout_cancels_in_flight(self, output):
        started = asyncio.Event()

        async def stuck(message):
            started.set()
            await asyncio.sleep(10)
            return message

        queue_input = QueueInput()
        engine = Engine(EngineConfig(drain_timeout=0.05))
        engine.input(queue_input).output(output).add_service('stuck', stuck)
        task = asyncio.ensure_future(engine.run())
        await queue_input.put(Message(origin='a@x.com', key='stuck'))
        await asyncio.wait_for(started.wait(), 2.0)
        engine.shutdown()
        await asyncio.wait_for(task, 2.0)
        assert output.sent == []

    @pytest.mark.asyncio
    async def test_late_response_through_attach(self, output):
        queue_input = QueueInput()
        engine = Engine().input(queue_input).output(output)
        engine.add_service('alarm', Alarm(seconds_per_minute=0.01))
        task = asyncio.ensure_future(engine.run())
        await queue_input.put(Message(origin='a@x.com', key='alarm', args=('tea', '1')))
        for _ in range(100):
            if output.sent:
                break
            await asyncio.sleep(0.01)
        engine.shutdown()
        await asyncio.wait_for(task, 2.0)
        assert output.sent[0].args == ('tea',)
        assert output.sent[0].origin == 'a@x.com'


class TestLogLevel:
    @pytest.fixture
    def service_logger(self):
        logger = logging.getLogger('service_io')
        handlers, level = list(logger.handlers), logger.level
        logger.handlers = []
        yield logger
        logger.handlers = handlers
        logger.setLevel(level)

    @pytest.mark.asyncio
    async def test_configured_level_applied_on_run(self, service_logger, make_message):
        engine = Engine(EngineConfig(log_level='DEBUG')).input(ListInput([make_message()]))
        await run_engine(engine)
        assert service_logger.level == logging.DEBUG
        assert len(service_logger.handlers) == 1

    @pytest.mark.asyncio
    async def test_no_level_leaves_logging_alone(self, service_logger, make_message):
        service_logger.setLevel(logging.WARNING)
        await run_engine(Engine().input(ListInput([make_message()])))
        assert service_logger.level == logging.WARNING
        assert service_logger.handlers == []
