import pytest

from amicooked.clients.openrouter import AICallError
from amicooked.services import prompts
from amicooked.services.analysis import AnalysisFailedError, AnalysisService
from fakes import (
    SAMPLE_PROFILE,
    SAMPLE_STATS,
    FakeAIClient,
    narrative_reply,
    projects_reply,
    scores_reply,
    single_phase_reply,
)


def _service(settings, documents, replies) -> tuple[AnalysisService, FakeAIClient]:
    client = FakeAIClient(replies)
    return AnalysisService(client=client, documents=documents, settings=settings), client


@pytest.mark.asyncio
async def test_two_phase_passes_phase_one_scores_to_synthesis(settings, documents):
    poisoned = {
        key: {'score': 100}
        for key in ('activity', 'skillSignals', 'growth', 'collaboration')
    }
    service, client = _service(
        settings,
        documents,
        [scores_reply(55, 70, 30, 45), narrative_reply(categoryScores=poisoned, cookedLevel=10)],
    )

    result = await service.analyze_cooked_level(SAMPLE_STATS, SAMPLE_PROFILE, model='meta-llama/llama-4-scout')

    assert len(client.calls) == 2
    assert client.calls[0]['system_prompt'] == prompts.SCORING_INSTRUCTIONS
    synthesis_prompt = client.calls[1]['prompt']
    assert '- activity: 55/100, weight 40%' in synthesis_prompt
    assert '- skillSignals: 70/100, weight 30%' in synthesis_prompt
    assert '- growth: 30/100, weight 15%' in synthesis_prompt
    assert '- collaboration: 45/100, weight 15%' in synthesis_prompt

    assert {key: value.score for key, value in result.category_scores.items()} == {
        'activity': 55,
        'skillSignals': 70,
        'growth': 30,
        'collaboration': 45,
    }
    # 0.4*55 + 0.3*70 + 0.15*30 + 0.15*45 = 54.25
    assert result.cooked_level == 5
    assert result.level_name == 'Cooked'
    assert result.mode == 'two_phase'
    assert result.model == 'meta-llama/llama-4-scout'
    assert result.summary.startswith('Consistent but narrow')
    assert all(call['model'] == 'meta-llama/llama-4-scout' for call in client.calls)


@pytest.mark.asyncio
async def test_missing_category_is_retried_not_defaulted(settings, documents):
    incomplete = (
        '{"categoryScores": {"activity": {"score": 60}, "skillSignals": {"score": 60}, '
        '"collaboration": {"score": 60}}}'
    )
    service, client = _service(settings, documents, [incomplete, scores_reply(), narrative_reply()])

    result = await service.analyze_cooked_level(SAMPLE_STATS, None)

    assert len(client.calls) == 3
    assert result.category_scores['growth'].score == 30


@pytest.mark.asyncio
async def test_retry_exhaustion_raises_analysis_failed(settings, documents):
    service, client = _service(
        settings,
        documents,
        ['no json here', AICallError('upstream 503', status_code=503), '{"categoryScores": {}}'],
    )

    with pytest.raises(AnalysisFailedError) as excinfo:
        await service.analyze_cooked_level(SAMPLE_STATS, SAMPLE_PROFILE)

    assert excinfo.value.step == 'scoring'
    assert excinfo.value.attempts == settings.ai_max_attempts
    assert len(client.calls) == settings.ai_max_attempts


@pytest.mark.asyncio
async def test_synthesis_failure_after_scoring_still_fails(settings, documents):
    service, client = _service(settings, documents, [scores_reply(), 'bad', 'bad', 'bad'])

    with pytest.raises(AnalysisFailedError) as excinfo:
        await service.analyze_cooked_level(SAMPLE_STATS, SAMPLE_PROFILE)

    assert excinfo.value.step == 'synthesis'
    assert len(client.calls) == 4


@pytest.mark.asyncio
async def test_single_phase_returns_scores_and_narrative_from_one_call(settings, documents):
    reply = single_phase_reply(activity=90, skill_signals=90, growth=90, collaboration=90)
    service, client = _service(settings, documents, [reply])

    result = await service.analyze_cooked_level(SAMPLE_STATS, SAMPLE_PROFILE, mode='single_phase')

    assert len(client.calls) == 1
    assert prompts.ANALYSIS_INSTRUCTIONS in client.calls[0]['system_prompt']
    assert result.cooked_level == 9
    assert result.level_name == 'Cooking'
    assert result.mode == 'single_phase'
    assert result.model == 'openrouter/free'


@pytest.mark.asyncio
async def test_tone_nickname_and_previous_analysis_shape_the_synthesis(settings, documents):
    service, client = _service(settings, documents, [scores_reply(), narrative_reply()])
    previous, _ = _service(settings, documents, [scores_reply(20, 20, 20, 20), narrative_reply()])
    earlier = await previous.analyze_cooked_level(SAMPLE_STATS, SAMPLE_PROFILE)

    await service.analyze_cooked_level(
        SAMPLE_STATS, SAMPLE_PROFILE, previous_analysis=earlier, tone='brutal', nickname='ByteWizard'
    )

    system_prompt = client.calls[1]['system_prompt']
    assert prompts.TONE_INSTRUCTIONS['brutal'] in system_prompt
    assert 'Address the user as "ByteWizard"' in system_prompt
    assert 'Progress comparison' in system_prompt
    assert '## PREVIOUS ANALYSIS' in client.calls[1]['prompt']


@pytest.mark.asyncio
async def test_unknown_mode_is_rejected(settings, documents):
    service, _ = _service(settings, documents, [])

    with pytest.raises(ValueError):
        await service.analyze_cooked_level(SAMPLE_STATS, None, mode='three_phase')


@pytest.mark.asyncio
async def test_recommended_projects_retry_until_four(settings, documents):
    service, client = _service(settings, documents, [projects_reply(count=3), projects_reply(count=4)])

    projects = await service.get_recommended_projects(SAMPLE_STATS, SAMPLE_PROFILE, model='m')

    assert len(projects) == 4
    assert len(client.calls) == 2
    assert 'Suggest exactly 4 projects' in client.calls[0]['system_prompt']


@pytest.mark.asyncio
async def test_results_are_saved_as_latest_and_history(settings, documents):
    service, _ = _service(settings, documents, [scores_reply(), narrative_reply(), projects_reply()])
    result = await service.analyze_cooked_level(SAMPLE_STATS, SAMPLE_PROFILE)
    projects = await service.get_recommended_projects(SAMPLE_STATS, SAMPLE_PROFILE)

    assert await service.get_latest_result('user-1') is None
    await service.save_result('user-1', result)
    await service.save_projects('user-1', projects)

    latest = await service.get_latest_result('user-1')
    assert latest is not None
    assert latest.cooked_level == result.cooked_level
    assert latest.category_scores['activity'].score == 55
    assert [project.name for project in await service.get_latest_projects('user-1')] == [
        project.name for project in projects
    ]

    history = await documents.list('users/user-1/results')
    assert {doc_id for doc_id, _ in history} >= {'latest'}
    assert len(history) == 2
