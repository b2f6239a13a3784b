import pytest

from amicooked.clients.openrouter import AICallError
from amicooked.models.agent import Preferences, ProfileUpdate
from amicooked.models.analysis import Project, StackEntry
from amicooked.models.usage import UsageType
from amicooked.services.account import AccountService
from amicooked.services.chat import ChatNotFoundError, ChatService, chat_title
from amicooked.services.projects import ProjectNotFoundError, ProjectService, slugify
from amicooked.services.usage import LimitExceededError
from fakes import SAMPLE_PROFILE, SAMPLE_STATS


@pytest.fixture
def chat_service(documents, usage_service, sessions, ai_client) -> ChatService:
    return ChatService(documents=documents, usage=usage_service, sessions=sessions, client=ai_client)


@pytest.fixture
def project_service(documents, usage_service, sessions, ai_client) -> ProjectService:
    return ProjectService(documents=documents, usage=usage_service, sessions=sessions, client=ai_client)


@pytest.fixture
def account_service(documents, usage_service, sessions) -> AccountService:
    return AccountService(
        documents=documents, usage_store=usage_service.store, sessions=sessions, plans=usage_service.plans
    )


def _project(name: str = 'Realtime Study Planner') -> Project:
    return Project(
        name=name,
        skill1='WebSockets',
        overview='Shared study sessions with live updates.',
        suggested_stack=[StackEntry(name='FastAPI'), StackEntry(name='Redis', description='pub/sub')],
    )


def test_chat_title_is_cut_at_fifty_characters():
    assert chat_title('  short question ') == 'short question'
    assert chat_title('x' * 60) == 'x' * 50 + '...'


def test_slugify_project_names():
    assert slugify('Realtime Study Planner!') == 'realtime-study-planner'
    assert slugify('***') == 'project'
    assert len(slugify('word ' * 40)) <= 60


@pytest.mark.asyncio
async def test_first_message_creates_chat_and_charges_usage(chat_service, usage_service, ai_client):
    ai_client.replies.append('Your activity score is holding you back.')

    reply = await chat_service.send_message('user-1', 'Why is my level only 5?')

    assert reply.reply == 'Your activity score is holding you back.'
    assert reply.model == 'meta-llama/llama-4-scout'
    assert reply.using_fallback is False
    chat = await chat_service.get_chat('user-1', reply.chat_id)
    assert chat.title == 'Why is my level only 5?'
    assert [turn.role for turn in chat.messages] == ['user', 'assistant']
    assert (await usage_service.store.get_usage('user-1', UsageType.MESSAGE.value)).current == 1
    assert 'PLAN CONTEXT: FREE TIER' in ai_client.calls[0]['system_prompt']


@pytest.mark.asyncio
async def test_follow_up_message_sees_previous_turns(chat_service, sessions, usage_service, ai_client):
    await usage_service.set_plan('user-1', 'student')
    session = await sessions.start('user-1', usage_service.plans.get_plan('student'))
    session.set_context(SAMPLE_STATS, SAMPLE_PROFILE)
    ai_client.replies.extend(['First answer.', 'Second answer.'])

    first = await chat_service.send_message('user-1', 'First question')
    second = await chat_service.send_message('user-1', 'Second question', chat_id=first.chat_id)

    assert second.chat_id == first.chat_id
    prompt = ai_client.calls[1]['prompt']
    assert 'USER: First question' in prompt
    assert 'ASSISTANT: First answer.' in prompt
    assert 'Top languages: Python, TypeScript, Go' in prompt
    chat = await chat_service.get_chat('user-1', first.chat_id)
    assert len(chat.messages) == 4
    assert chat.context['githubStats']['username'] == 'octocat'
    assert [c.id for c in await chat_service.list_chats('user-1')] == [first.chat_id]


@pytest.mark.asyncio
async def test_failed_reply_is_neither_saved_nor_charged(chat_service, usage_service, ai_client):
    ai_client.replies.append(AICallError('upstream 502', status_code=502))

    with pytest.raises(AICallError):
        await chat_service.send_message('user-1', 'Hello?')

    assert await chat_service.list_chats('user-1') == []
    assert (await usage_service.store.get_usage('user-1', 'messages')).current == 0


@pytest.mark.asyncio
async def test_exhausted_free_plan_blocks_messages(chat_service, usage_service, ai_client):
    for _ in range(5):
        await usage_service.store.increment('user-1', 'messages')

    with pytest.raises(LimitExceededError):
        await chat_service.send_message('user-1', 'One more?')
    assert ai_client.calls == []


@pytest.mark.asyncio
async def test_unknown_chat_is_not_found(chat_service):
    with pytest.raises(ChatNotFoundError):
        await chat_service.send_message('user-1', 'Hello', chat_id='missing')


@pytest.mark.asyncio
async def test_saving_a_project_records_a_bookmark_memory(project_service, usage_service, sessions):
    await usage_service.set_plan('user-1', 'student')

    saved = await project_service.save_project('user-1', _project())

    assert saved.id == 'realtime-study-planner'
    assert [project.id for project in await project_service.list_saved_projects('user-1')] == [saved.id]
    view = await sessions.memory_view('user-1', usage_service.plans.get_plan('student'))
    assert view.items[0].type.value == 'other'
    assert 'Realtime Study Planner' in view.items[0].content
    assert view.items[0].meta['source'] == 'project-bookmark'

    await project_service.unsave_project('user-1', saved.id)
    assert await project_service.list_saved_projects('user-1') == []
    with pytest.raises(ProjectNotFoundError):
        await project_service.unsave_project('user-1', saved.id)


@pytest.mark.asyncio
async def test_project_chat_is_guarded_and_persisted(project_service, usage_service, ai_client):
    saved = await project_service.save_project('user-1', _project())
    ai_client.replies.extend(['Start with the data model.', 'Then add the socket layer.'])

    await project_service.send_project_message('user-1', saved.id, 'Where do I start?')
    reply = await project_service.send_project_message('user-1', saved.id, 'And then?')

    assert reply.reply == 'Then add the socket layer.'
    assert reply.chat_id == saved.id
    assert '# PROJECT CONTEXT' in ai_client.calls[0]['system_prompt']
    assert '- Name: Realtime Study Planner' in ai_client.calls[0]['system_prompt']
    assert 'Previous conversation:' in ai_client.calls[1]['prompt']
    assert 'Where do I start?' in ai_client.calls[1]['prompt']
    stored = await project_service.get_saved_project('user-1', saved.id)
    assert len(stored.messages) == 4
    assert (await usage_service.store.get_usage('user-1', 'projectChats')).current == 2


@pytest.mark.asyncio
async def test_preferences_personalise_chat(chat_service, account_service, ai_client):
    await account_service.update_profile(
        'user-1', ProfileUpdate(preferences=Preferences(roast_intensity='mild', dev_nickname='Ada'))
    )
    ai_client.replies.append('Gentle answer.')

    await chat_service.send_message('user-1', 'Be honest')

    system_prompt = ai_client.calls[0]['system_prompt']
    assert '# TONE OVERRIDE' in system_prompt
    assert 'Address the user as "Ada"' in system_prompt


@pytest.mark.asyncio
async def test_account_reset_keeps_plan_and_wipes_everything_else(
    account_service, chat_service, usage_service, sessions, documents, ai_client
):
    await usage_service.set_plan('user-1', 'pro')
    await account_service.update_profile('user-1', ProfileUpdate(profile=SAMPLE_PROFILE))
    ai_client.replies.append('Answer.')
    await chat_service.send_message('user-1', 'Question')

    await account_service.reset_all_data('user-1')

    profile = await account_service.get_profile('user-1')
    assert profile.plan == 'pro'
    assert profile.profile is None
    assert await chat_service.list_chats('user-1') == []
    assert (await usage_service.store.get_usage('user-1', 'messages')).current == 0
    assert sessions.get('user-1') is None

    await account_service.delete_account('user-1')
    assert await documents.get('users/user-1') is None
    assert (await account_service.get_profile('user-1')).plan == 'free'
