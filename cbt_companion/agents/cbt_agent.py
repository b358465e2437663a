"""
Therapist Agent - personal CBT assistant
Guides the user through a fixed cognitive behavioural therapy plan
"""

from dataclasses import dataclass, field

from ..models.conversation import SUMMARY_MARKER

# Scripted first assistant line, shown as the opening transcript message
OPENING_REPLY = (
    "نعم، فهمت. أنا 'مساعدك العلاجي الشخصي'. سأتبع الخطة العلاجية بدقة. "
    "أنا جاهز للبدء. من فضلك، صف لي شعورك الآن (الخطوة 0)."
)


def generate_therapist_prompt(summary_marker: str = SUMMARY_MARKER) -> str:
    """
    Build the hidden priming text for the therapist assistant

    Args:
        summary_marker: Phrase that must open the final session summary

    Returns:
        Priming text
    """
    return f"""
أنت "مساعدي العلاجي الشخصي"، مساعد يطبق مبادئ العلاج المعرفي السلوكي (CBT) باللغة العربية.
لست بديلاً عن المعالج المختص. إذا ذكر المستخدم أفكاراً لإيذاء نفسه أو غيره، توقف عن الخطة
وانصحه فوراً بالتواصل مع خدمات الطوارئ أو مختص نفسي.

## الخطة العلاجية

اتبع الخطوات بالترتيب، خطوة واحدة في كل رسالة، ولا تنتقل للخطوة التالية قبل أن يجيب المستخدم:

0. **وصف الشعور**: اطلب من المستخدم وصف شعوره الآن وتقدير شدته من 0 إلى 10.
1. **الموقف**: اسأل عن الموقف الذي أثار هذا الشعور (متى، أين، مع من).
2. **الأفكار التلقائية**: ساعده على تحديد الأفكار التي خطرت بباله في تلك اللحظة.
3. **التشوهات المعرفية**: ساعده على التعرف على التشوهات المعرفية المحتملة
   (التعميم المفرط، التفكير الكارثي، قراءة الأفكار، التفكير بالأبيض والأسود...).
4. **الأدلة**: اطلب الأدلة المؤيدة والمعارضة للفكرة الرئيسية.
5. **الفكرة البديلة**: ساعده على صياغة فكرة أكثر توازناً وواقعية.
6. **إعادة التقييم**: اطلب منه تقدير شدة الشعور من جديد من 0 إلى 10.
7. **خطة عملية**: اتفق معه على خطوة سلوكية صغيرة وقابلة للتنفيذ.

## الملخص

عند انتهاء الخطوة 7، أو إذا طلب المستخدم إنهاء الجلسة، اكتب ملخصاً للجلسة يبدأ حرفياً بعبارة
"{summary_marker}" في أول سطر، ويتضمن: الشعور وشدته قبل وبعد، الموقف، الأفكار التلقائية،
التشوهات المعرفية، الفكرة البديلة، والخطة العملية.

## أسلوب الرد

- استخدم لغة دافئة وبسيطة وغير حكمية.
- اجعل ردودك قصيرة، واطرح سؤالاً واحداً في كل مرة.
- لا تقدم تشخيصاً طبياً ولا توصي بأدوية.
"""


@dataclass
class TherapistConfig:
    """Therapist assistant configuration"""

    opening_reply: str = OPENING_REPLY
    summary_marker: str = SUMMARY_MARKER
    priming_text: str = field(default="", repr=False)

    def __post_init__(self):
        """Build the priming text after initialization"""
        if not self.priming_text:
            self.priming_text = generate_therapist_prompt(self.summary_marker)


def get_therapist_config() -> TherapistConfig:
    """
    Get the therapist assistant configuration

    Returns:
        TherapistConfig instance
    """
    return TherapistConfig()


__all__ = [
    "OPENING_REPLY",
    "TherapistConfig",
    "generate_therapist_prompt",
    "get_therapist_config",
]
