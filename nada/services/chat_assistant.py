"""
Conversational Assistant
Answers farmer questions about their paddies from recent analyses and alerts,
using the Gemini language service with a deterministic built-in fallback
"""
import re

from flask import current_app

from nada.errors import ExternalLanguageServiceError
from nada.services.language_client import GenerativeLanguageClient

MODE_MODEL = 'model'
MODE_FALLBACK_NO_KEY = 'fallback_no_key'
MODE_FALLBACK_DUE_TO_ERROR = 'fallback_due_to_error'
MODE_FALLBACK_EMPTY_OUTPUT = 'fallback_empty_output'

MAX_FOLLOW_UPS = 4


class ConversationalAssistant:
    """Farmer-facing question answering over the analysis history"""

    def __init__(self, client=None):
        self.client = client or GenerativeLanguageClient()

    def answer(self, query, context):
        """
        Answer a natural-language question

        Args:
            query: The farmer's question
            context: dict with recent_analyses, active_alerts and optional location

        Returns:
            dict with response, follow_up_questions (1-4 items) and mode
        """
        context = context or {}
        follow_ups = self.generate_follow_up_questions(context)

        if not self.client.is_configured():
            current_app.logger.info("Gemini API key not available, using fallback response")
            return self._result(self.get_fallback_response(query, context), follow_ups, MODE_FALLBACK_NO_KEY)

        prompt = self.build_prompt(query, context)
        try:
            text = self.client.generate(prompt)
        except ExternalLanguageServiceError as e:
            current_app.logger.error(f"Gemini API integration error after all retries: {e}")
            error_context = self._describe_error(e)
            return self._result(
                self.get_fallback_response(query, context, error_context),
                follow_ups,
                MODE_FALLBACK_DUE_TO_ERROR
            )

        if not text or not text.strip():
            current_app.logger.warning("No text generated by Gemini API, using fallback response")
            return self._result(self.get_fallback_response(query, context), follow_ups, MODE_FALLBACK_EMPTY_OUTPUT)

        current_app.logger.info(f"Gemini response generated for query: {query[:30]!r}")
        return self._result(self.format_response(text), follow_ups, MODE_MODEL)

    @staticmethod
    def _result(response, follow_ups, mode):
        return {
            'response': response,
            'follow_up_questions': follow_ups,
            'mode': mode,
        }

    @staticmethod
    def _describe_error(error):
        message = str(error).lower()
        if error.status_code == 503 or '503' in message or 'overloaded' in message:
            return " (Google's AI is currently experiencing high demand)"
        if error.status_code == 429 or '429' in message or 'rate limit' in message:
            return " (API rate limit reached)"
        return ''

    @staticmethod
    def _latest(context):
        analyses = context.get('recent_analyses') or []
        return analyses[0] if analyses else None

    def build_prompt(self, query, context):
        """Build the contextual prompt sent to the language model"""
        prompt = (
            "You are NADA (Natural Acoustic Diagnostics & Alerts), an assistant helping Malaysian "
            "rice paddy farmers understand water quality through frog call analysis.\n\n"
            "CONTEXT:\n"
            "You use bioacoustic monitoring (frog calls) to assess water quality. High frog activity "
            "(≥50 calls/min) indicates good water quality, moderate activity (30-49 calls/min) suggests "
            "caution, and low activity (<30 calls/min) indicates potential water quality issues.\n\n"
        )

        latest = self._latest(context)
        if latest:
            frog = latest.get('frog_analysis') or {}
            environment = latest.get('environmental_analysis') or {}
            assessment = latest.get('water_quality_assessment') or {}
            species = ', '.join(frog.get('species_detected') or []) or 'None'
            biodiversity = environment.get('biodiversity_score')
            biodiversity_text = f"{biodiversity * 100:.1f}%" if biodiversity is not None else 'N/A'

            prompt += (
                "LATEST WATER QUALITY DATA:\n"
                f"- Frog call density: {frog.get('call_density', 'N/A')} calls per minute\n"
                f"- Water quality status: {assessment.get('status', 'Unknown')}\n"
                f"- Overall score: {assessment.get('overall_score', 'N/A')}\n"
                f"- Species detected: {species}\n"
                f"- Biodiversity score: {biodiversity_text}\n"
                f"- Ecosystem health: {environment.get('ecosystem_health', 'Unknown')}\n\n"
            )

        unread = [a for a in (context.get('active_alerts') or []) if not a.get('read')]
        if unread:
            prompt += "ACTIVE ALERTS:\n"
            prompt += '\n'.join(f"- {a.get('title')}: {a.get('message')}" for a in unread)
            prompt += '\n\n'

        location = context.get('location')
        if isinstance(location, dict) and all(
            isinstance(location.get(field), (int, float)) and not isinstance(location.get(field), bool)
            for field in ('latitude', 'longitude')
        ):
            prompt += (
                f"LOCATION: {location.get('region', 'Unknown region')} "
                f"({location['latitude']:.3f}, {location['longitude']:.3f})\n\n"
            )

        prompt += (
            f'FARMER\'S QUESTION: "{query}"\n\n'
            "INSTRUCTIONS:\n"
            "1. Provide practical, actionable advice for Malaysian rice farmers\n"
            "2. Use simple English, avoid technical jargon\n"
            "3. Reference the specific data from their latest recordings when relevant\n"
            "4. Give numbered step-by-step recommendations when suggesting actions\n"
            "5. Focus on water quality, frog populations, and sustainable farming practices\n"
            "6. Keep responses concise (under 400 words)\n"
            "7. If suggesting chemical testing or major changes, recommend consulting local "
            "agricultural extension officers\n\n"
            "Please provide a helpful, farmer-friendly response:"
        )
        return prompt

    @staticmethod
    def format_response(text):
        """Strip bold markers and collapse runs of blank lines"""
        formatted = re.sub(r'\*\*(.*?)\*\*', r'\1', text)
        formatted = re.sub(r'\n\s*\n\s*\n', '\n\n', formatted).strip()

        lowered = formatted.lower()
        if not lowered.startswith(('hello', 'hi', 'good')) and 'your' not in lowered:
            formatted = f"Based on your latest recordings, {formatted[:1].lower()}{formatted[1:]}"
        return formatted

    def get_fallback_response(self, query, context, error_context=''):
        """Keyword-matched answer built from the same context"""
        lowered = (query or '').lower()
        latest = self._latest(context)

        if any(word in lowered for word in ('water quality', 'paddy', 'rice field')):
            if latest:
                status = (latest.get('water_quality_assessment') or {}).get('status')
                density = (latest.get('frog_analysis') or {}).get('call_density')

                if status == 'good':
                    return (
                        f"Your water quality looks excellent! I detected {density} frog calls per minute, "
                        "which indicates very healthy water conditions. The high frog activity shows your "
                        "ecosystem is thriving. Continue your current farming practices - they're working well!"
                    )
                if status == 'warning':
                    return (
                        f"Your water quality needs some attention. I detected {density} frog calls per minute, "
                        "which is in the moderate range. Here's what I recommend: 1) Test your water pH levels, "
                        "2) Temporarily reduce chemical fertilizer use, 3) Check for runoff from nearby areas, "
                        "4) Monitor daily for the next week to track changes."
                    )
                return (
                    f"Your water quality is concerning. I only detected {density} frog calls per minute, "
                    "which is quite low. IMMEDIATE STEPS: 1) Stop adding any chemicals temporarily, "
                    "2) Test water pH and dissolved oxygen levels, 3) Look for contamination sources "
                    "(runoff, waste), 4) Contact your local agricultural extension officer for professional "
                    "water testing assistance."
                )
            return (
                "I don't have recent water quality data from your fields. Please record some audio from "
                "your rice paddies (preferably at dawn or dusk when frogs are most active) so I can help "
                "assess the situation and provide specific advice."
            )

        if any(word in lowered for word in ('frog', 'call', 'sound')):
            if latest:
                species = (latest.get('frog_analysis') or {}).get('species_detected') or []
                if species:
                    return (
                        f"Great news! In your latest recording, I identified {len(species)} different frog "
                        f"species including {species[0]}. This diversity is a positive sign for your water "
                        "quality. Different frog species have different tolerance levels for water conditions, "
                        "so having multiple species suggests your water is supporting a healthy amphibian "
                        "community, which is generally excellent for rice farming."
                    )
                return (
                    "I didn't detect clear frog calls in your latest recording. This could mean several "
                    "things: 1) You recorded during inactive hours (frogs are most active at dawn and dusk), "
                    "2) Frogs might be stressed due to water quality issues, 3) Seasonal variation in frog "
                    "activity. I recommend recording again at dawn (5-7 AM) or dusk (6-8 PM) when frogs "
                    "are most vocal."
                )
            return (
                "To help you understand what frog species are in your rice fields, please record audio "
                "during dawn (5-7 AM) or dusk (6-8 PM) when frogs are most active. I'll analyze their "
                "calls and tell you what they indicate about your water quality."
            )

        if any(word in lowered for word in ('improve', 'fix', 'what should', 'how to')):
            if latest:
                status = (latest.get('water_quality_assessment') or {}).get('status')
                if status == 'good':
                    return (
                        "Your water quality is already excellent! To maintain these great conditions: "
                        "1) Continue your current water management practices, 2) Monitor regularly with NADA "
                        "recordings, 3) Maintain proper water levels in your paddies, 4) Use organic "
                        "fertilizers when possible, 5) Keep drainage channels clear for good water flow."
                    )
                if status in ('warning', 'alert'):
                    return (
                        "Here's your action plan to improve water quality: IMMEDIATE (1-3 days): Stop chemical "
                        "treatments, flush fields with fresh water, test pH levels. SHORT-TERM (1-2 weeks): "
                        "Reduce fertilizer use by 50%, ensure proper drainage, remove any organic debris. "
                        "LONG-TERM: Switch to organic fertilizers gradually, maintain buffer zones around "
                        "fields, monitor weekly with NADA. Contact your agricultural extension officer if "
                        "conditions don't improve in 2 weeks."
                    )
            return (
                "To improve your rice field water quality: 1) Record audio with NADA to establish baseline, "
                "2) Test water pH (should be 6.0-7.0), 3) Ensure good water circulation, 4) Use organic "
                "fertilizers, 5) Maintain proper water levels, 6) Keep drainage channels clear. Regular "
                "monitoring with NADA will help track your progress!"
            )

        message = (
            f"I'm here to help you understand your rice field conditions through frog call analysis"
            f"{error_context}.\n\n"
            "Here are some questions I can help with:\n"
            "• \"How is my water quality?\" - I'll analyze your recent recordings\n"
            "• \"What do the frogs in my field tell me?\" - Species identification and insights\n"
            "• \"How can I improve my water conditions?\" - Step-by-step improvement plans\n"
            "• \"When should I record for best results?\" - Timing and technique tips\n"
            "• \"What do low frog calls mean?\" - Interpreting concerning results\n\n"
            "Please record audio from your rice fields at dawn (5-7 AM) or dusk (6-8 PM) when frogs are "
            "most active, and I'll provide specific advice based on what I detect."
        )
        if error_context:
            message += (
                f"\n\nNote: I'm currently using my built-in knowledge due to high AI system demand"
                f"{error_context}. My responses are still based on the latest data from your recordings."
            )
        return message

    def generate_follow_up_questions(self, context):
        """Suggest up to four follow-up questions, shaped by the latest assessment"""
        questions = [
            "How can I improve my water quality?",
            "When is the best time to record frog calls?",
            "What do different frog species tell me about my field?",
            "Should I be worried about my current readings?",
        ]

        latest = self._latest(context or {})
        if latest:
            status = (latest.get('water_quality_assessment') or {}).get('status')
            if status == 'alert':
                questions.insert(0, "What immediate steps should I take?")
                questions.append("How do I test my water pH?")
            elif status == 'good':
                questions.append("How do I maintain these good conditions?")
                questions.append("Can I optimize my farming practices further?")

            species = (latest.get('frog_analysis') or {}).get('species_detected')
            if species is not None:
                if len(species) > 2:
                    questions.append("Why do I have so many different frog species?")
                elif len(species) == 0:
                    questions.append("Why aren't there any frogs in my recording?")

        return questions[:MAX_FOLLOW_UPS]
