"""
MeetSync

Turns meeting transcripts into task proposals that a human approves,
one at a time, in Slack before anything is written to Notion.

Philosophy:
- Nothing reaches the task database without an explicit human click
- One proposal on screen per meeting; the next card waits for a decision
- A single trace id follows a transcript through every component and log line
- Session state lives in memory and may be lost on restart

Usage:
    from meetsync.common import load_config, LLMClient
    from meetsync.common.schemas import Proposal, CandidateTask
    from meetsync.sync import Reconciler, SessionRegistry, InteractionStateMachine
"""

__version__ = "0.1.0"
