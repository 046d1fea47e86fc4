from minequery.utils.context_cache import QuickContextCache


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_ttl_boundary():
    clock = FakeClock(1000.0)
    cache = QuickContextCache(ttl_sec=300, clock=clock)
    cache.set('u1', last_intent='SHIFT_AGGREGATION', last_question='production by shift')
    clock.now = 1000.0 + 4 * 60 + 59
    assert cache.get('u1') is not None
    clock.now = 1000.0 + 5 * 60 + 1
    assert cache.get('u1') is None
    assert len(cache) == 0


def test_users_are_isolated():
    cache = QuickContextCache(clock=FakeClock())
    cache.set('u1', 'SHIFT_AGGREGATION', 'q1', last_parameters={'shift': 'A'})
    cache.set('u2', 'MONTHLY_SUMMARY', 'q2')
    assert cache.get('u1').last_parameters == {'shift': 'A'}
    assert cache.get('u2').last_intent == 'MONTHLY_SUMMARY'
    cache.clear('u1')
    assert not cache.has('u1')
    assert cache.has('u2')


def test_last_write_wins():
    cache = QuickContextCache(clock=FakeClock())
    cache.set('u1', 'SHIFT_AGGREGATION', 'first')
    cache.set('u1', 'MONTHLY_SUMMARY', 'second')
    assert cache.get('u1').last_question == 'second'


def test_as_turn():
    cache = QuickContextCache(clock=FakeClock())
    ctx = cache.set('u1', 'EQUIPMENT_OPTIMIZATION', 'pick equipment', last_answer='Answer: x',
                    last_parameters={'bench': 1}, route_taken='deterministic')
    turn = ctx.as_turn()
    assert turn['intent'] == 'EQUIPMENT_OPTIMIZATION'
    assert turn['parameters'] == {'bench': 1}
    cache.clear_all()
    assert len(cache) == 0
