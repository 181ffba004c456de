import streamlit as st
import json
from datetime import datetime
import pandas as pd

from rxnudge.config import setup_logging
from rxnudge.pipeline import build_pipeline
from rxnudge.store import MedicationRecordStore

setup_logging()

# Page configuration
st.set_page_config(
    page_title="Rx Nudge",
    page_icon="💊",
    layout="wide",
    initial_sidebar_state="expanded"
)

FLAG_ICONS = {"RED": "🔴", "YELLOW": "🟡", "GREEN": "🟢"}

FAILURE_LABELS = {
    "unclear_name": "Name could not be read",
    "invalid_drug": "Not a recognized medication",
    "lookup_unavailable": "Drug database unreachable",
    "unreadable_image": "Image unreadable",
}


@st.cache_data
def load_css():
    return """
    .nudge-card {
        background: white; padding: 1.25rem; border-radius: 10px;
        box-shadow: 0 2px 4px rgba(0,0,0,0.1); margin: 0.75rem 0;
    }
    .nudge-headline { font-size: 1.2rem; font-weight: bold; margin-bottom: 0.5rem; }
    .nudge-warning { color: #b45309; white-space: pre-line; }
    """


@st.cache_resource
def get_pipeline():
    # One pipeline per server process; its cache and sweeper are shared by all sessions
    return build_pipeline(sink=MedicationRecordStore())


# Initialize session state
if 'scan_result' not in st.session_state:
    st.session_state.scan_result = None
if 'confirmed_result' not in st.session_state:
    st.session_state.confirmed_result = None
if 'upload' not in st.session_state:
    st.session_state.upload = None


def _patient_context(age, name, lifestyle, concerns, language):
    return {
        'name': name,
        'age': age,
        'lifestyle': lifestyle,
        'concerns': concerns,
        'language': language,
    }


def _active_list(text):
    return [line.strip() for line in (text or "").replace(",", "\n").splitlines() if line.strip()]


def main():
    st.markdown(f"<style>{load_css()}</style>", unsafe_allow_html=True)

    # Sidebar navigation
    with st.sidebar:
        st.title("💊 Rx Nudge")
        st.markdown("---")

        page = st.selectbox("Navigate", ["🔍 Scan", "✅ Review & Confirm", "📋 Nudge Cards", "⚠️ Interactions"])

        st.markdown("---")
        st.markdown("### 👤 Patient")
        st.session_state.patient_context = _patient_context(
            st.number_input("Age", min_value=0, max_value=120, value=None, placeholder="Unknown"),
            st.text_input("Name", value=""),
            st.text_input("Daily routine", value="", help="e.g. breakfast at 8am, walk after dinner"),
            st.text_input("Concerns", value=""),
            st.text_input("Language", value="English"),
        )
        st.session_state.active_medications = _active_list(
            st.text_area("Medications you already take", value="", help="One per line")
        )

        st.markdown("---")
        st.markdown("### ⚠️ Medical Disclaimer")
        st.caption("This tool is for educational purposes only and is not a medical device. Always consult healthcare professionals.")

    # Page routing
    if page == "🔍 Scan":
        show_scan_page()
    elif page == "✅ Review & Confirm":
        show_review_page()
    elif page == "📋 Nudge Cards":
        show_cards_page()
    elif page == "⚠️ Interactions":
        show_interactions_page()


def show_scan_page():
    st.header("🔍 Scan a Prescription")

    uploaded_file = st.file_uploader(
        "Choose a prescription photo or PDF",
        type=['png', 'jpg', 'jpeg', 'webp', 'pdf'],
        help="Upload a clear, well-lit photo of the prescription"
    )

    col1, col2 = st.columns(2)
    with col1:
        scan = st.button("🔍 Scan Prescription", type="primary", disabled=uploaded_file is None)
    with col2:
        rescan = st.button("🔄 Re-scan", disabled=st.session_state.scan_result is None,
                           help="Ignore the saved result and read the photo again")

    if scan and uploaded_file is not None:
        st.session_state.upload = (uploaded_file.getvalue(), uploaded_file.type)
        run_scan(force_refresh=False)
    elif rescan and st.session_state.upload is not None:
        image_hash = st.session_state.scan_result.get('image_hash')
        if image_hash:
            get_pipeline().invalidate(image_hash)
        run_scan(force_refresh=True)

    if st.session_state.scan_result:
        show_scan_summary(st.session_state.scan_result)


def run_scan(force_refresh):
    file_bytes, file_type = st.session_state.upload
    with st.spinner("Reading prescription..."):
        result = get_pipeline().process(
            file_bytes,
            file_type or "image/jpeg",
            active_medications=st.session_state.active_medications,
            patient_context=st.session_state.patient_context,
            force_refresh=force_refresh,
        )
    st.session_state.scan_result = result
    st.session_state.confirmed_result = None


def show_scan_summary(result):
    if result.get('status') == 'failed':
        st.error(f"❌ {result.get('error', 'Scan failed')}")
        if result.get('detail'):
            st.write(result['detail'])
        if result.get('suggestions'):
            st.info(f"💡 {result['suggestions']}")
    else:
        st.success(f"✅ Found {result['total_medications']} medication(s). Review them before continuing.")
        if result.get('warnings'):
            st.warning(result['warnings'])

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Medications", result.get('total_medications', 0))
    with col2:
        st.metric("Needs Attention", len(result.get('failedExtractions', [])))
    with col3:
        red = len([m for m in result.get('medications', []) if m.get('safety_flag') == 'RED'])
        st.metric("Red Flags", red)

    show_failed_extractions(result.get('failedExtractions', []))


def show_failed_extractions(failures):
    if not failures:
        return
    st.subheader("⚠️ Could not process")
    for failure in failures:
        label = FAILURE_LABELS.get(failure.get('reason'), failure.get('reason'))
        name = failure.get('originalName') or "Unknown"
        with st.expander(f"{label}: {name}"):
            st.write(failure.get('message', ''))
            if failure.get('suggestions'):
                st.write("Did you mean: " + ", ".join(failure['suggestions']))
            if failure.get('extractedData'):
                st.json(failure['extractedData'])


def show_review_page():
    st.header("✅ Review & Confirm")

    result = st.session_state.scan_result
    if not result or not result.get('medications'):
        st.info("No medications to review. Please scan a prescription first.")
        return

    edited = []
    for i, med in enumerate(result['medications']):
        data = med['extracted_data']
        flag = med.get('safety_flag', 'GREEN')
        validation = med.get('name_validation') or {}

        with st.expander(f"{FLAG_ICONS.get(flag, '')} {data['drug_name']}", expanded=flag != 'GREEN'):
            if validation.get('was_corrected'):
                st.caption(f"Matched to {validation.get('corrected_name')} "
                           f"(confidence {validation.get('confidence', 0):.0%})")
            if data.get('dosing_source') == 'ai_generated':
                st.caption("⚠️ Some dosing details were not on the prescription. Please check them.")

            col1, col2 = st.columns(2)
            with col1:
                drug_name = st.text_input("Drug", value=data['drug_name'], key=f"drug_{i}")
                dosage = st.text_input("Dosage", value=data.get('dosage', ''), key=f"dose_{i}")
                frequency = st.text_input("Frequency", value=data.get('frequency', ''), key=f"freq_{i}")
            with col2:
                duration = st.text_input("Duration", value=data.get('duration', ''), key=f"dur_{i}")
                route = st.text_input("Route", value=data.get('route', ''), key=f"route_{i}")
                instructions = st.text_input("Instructions", value=data.get('instructions', ''), key=f"instr_{i}")
            include = st.checkbox("Include this medication", value=True, key=f"include_{i}")

            st.write(f"**Safety:** {med.get('safety_reasoning', '')}")
            for interaction in med.get('interactions', []):
                st.write(f"• {interaction['involved_drug']}: {interaction['description']}")

        if not include:
            continue

        updated = dict(data, drug_name=drug_name.strip(), dosage=dosage.strip(), frequency=frequency.strip(),
                       duration=duration.strip(), route=route.strip(), instructions=instructions.strip())
        # An untouched name needs no second lookup
        unchanged = drug_name.strip() == data['drug_name']
        if not unchanged:
            updated['canonical_name'] = None
            updated['rxcui'] = None
        edited.append({'extracted_data': updated, 'skip_validation': unchanged})

    show_failed_extractions(result.get('failedExtractions', []))

    if st.button("✅ Confirm & Create Nudges", type="primary", disabled=not edited):
        with st.spinner("Writing your medication cards..."):
            st.session_state.confirmed_result = get_pipeline().confirm(
                edited,
                patient_context=st.session_state.patient_context,
                active_medications=st.session_state.active_medications,
            )
        st.success("Cards ready! Open the 📋 Nudge Cards page.")


def show_cards_page():
    st.header("📋 Your Medication Cards")

    confirmed = st.session_state.confirmed_result
    if not confirmed or not confirmed.get('medications'):
        st.info("No cards yet. Please confirm your medications first.")
        return

    language = st.session_state.patient_context.get('language', '')
    translate = st.checkbox(f"Show in {language}", value=False) if language.strip().lower() not in ("", "english", "en") else False

    for med in confirmed['medications']:
        card = med['patient_facing_card']
        flag = med.get('safety_flag', 'GREEN')

        body = "\n".join(text for text in (card['plain_instruction'], card['the_why'], card['habit_hook']) if text)
        if translate:
            body = get_pipeline().translate(body, language)['translated']

        st.markdown(f"<div class='nudge-card'><div class='nudge-headline'>{FLAG_ICONS.get(flag, '')} "
                    f"{card['headline']}</div></div>", unsafe_allow_html=True)
        st.write(body)
        if card['warning_label']:
            st.warning(card['warning_label'])

    show_failed_extractions(confirmed.get('failedExtractions', []))

    st.markdown("---")
    df = pd.DataFrame([{
        'Drug': m['extracted_data']['drug_name'],
        'Dosage': m['extracted_data']['dosage'],
        'Frequency': m['extracted_data']['frequency'],
        'Timing': m['extracted_data']['dose_timing'],
        'Safety': m['safety_flag'],
    } for m in confirmed['medications']])
    st.dataframe(df, use_container_width=True)

    st.download_button(
        "📄 Download JSON",
        data=json.dumps(confirmed, indent=2),
        file_name=f"rxnudge_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json",
        mime="application/json",
    )


def show_interactions_page():
    st.header("⚠️ Check a Medication")

    drug_name = st.text_input("Medication name")
    if not drug_name:
        return

    col1, col2 = st.columns(2)
    with col1:
        if st.button("🔎 Look Up"):
            info = get_pipeline().lookup_drug(drug_name)
            if info.get('found'):
                st.success(f"✅ {len(info['concepts'])} product(s) found for {info['name']}")
                st.dataframe(pd.DataFrame(info['concepts']), use_container_width=True)
            else:
                st.warning(info.get('message', 'Drug not found'))
    with col2:
        check = st.button("⚠️ Check Interactions", type="primary")

    if check:
        result = get_pipeline().check_interactions(drug_name, st.session_state.active_medications)
        flag = result['safetyFlag']
        st.markdown(f"### {FLAG_ICONS.get(flag['flag'], '')} {flag['flag']}")
        st.write(flag['reasoning'])
        for interaction in result['interactions']:
            with st.expander(f"🔄 {interaction['involved_drug']}", expanded=interaction['tier'] == 1):
                st.write(interaction['description'])
                if interaction.get('recommendation'):
                    st.markdown(f"**Recommendation:** {interaction['recommendation']}")


if __name__ == "__main__":
    main()
