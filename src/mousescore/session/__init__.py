"""
MouseScore session - loading inputs and persisting scored sessions.

    load_session(dlc_path)  -> SessionContext (inputs validated, prior save restored)
    save_session(ctx)       -> <base>_behaviour.json
"""

from mousescore.session.loader import (
    load_dlc,
    load_session,
    load_tracking_file,
    probe_movie,
    session_paths,
)
from mousescore.session.store import (
    BehaviourRecord,
    add_exclusion_range,
    apply_saved_session,
    behaviour_path,
    load_behaviour_file,
    remove_exclusion_range,
    save_session,
    update_exclusion_range,
)
